# smithagent

`smithagent` is a library of asyncio components for a device agent in a fleet
management system. With it a device can read its configuration, register with the
fleet server, report system information, run start-up health checks, download files
at a limited rate, and keep its installed Debian packages in line with the release
the server assigns.

## Installation

```
pip install smithagent
```

## Configuration: `smithagent.config`

The device configuration lives in a `magic.toml` file:

```toml
[meta]
magic_version = 2
server = "https://fleet.example.com/smith"

[tunnel]
server = "localhost"
secret = "secret"

[[check]]
name = "disk"
cmd = "df -h /"

[[package]]
name = "smith"
version = "0.2.23"
file = "smith_0.2.23_arm64.deb"
```

`MagicFile.load(location)` reads the file at `location`. With `None` it calls
`MagicFile.autoload()`, which tries `./magic.toml` first, then
`/etc/smith/magic.toml`, and falls back to `MagicFile.default()`. Each returns the
parsed file and the path it came from (`None` for the default).
`MagicFile.to_toml()` and `MagicFile.write_to_file(path)` write it back.

```python
from smithagent.config import MagicFile

magic, path = MagicFile.load("magic.toml")
print(magic.meta.server, [p.name for p in magic.packages or []])
```

`ConfigPackage.system_version()` asks `dpkg -l` for the installed version of a
package. `parse_dpkg_version(output)` picks that version out of the output.

## Components

- `smithagent.magic.MagicHandle` holds the loaded magic file for the running agent.
  It returns checks, packages, the server, release ids and the token. When one of
  these values changes, it writes the change back to the file it loaded.
  `wait_while_not_registered()` returns once a token is present.
- `smithagent.schema` models the messages exchanged with the server, such as
  `SafeCommandRequest`, `SafeCommandResponse`, `HomePost` and `HomePostResponse`.
  They are read and written with `from_json` and `to_json`.
- `smithagent.system.SystemInfo.collect()` gathers the hostname, OS release, kernel
  version, boot time, network interfaces, device tree and `nmcli` connection
  statuses. `get_serial_number()` reads the device serial.
- `smithagent.network.NetworkClient` sends gzipped JSON posts, fetches the package
  list of a release, and downloads package files into `./packages`.
- `smithagent.postman.Postman` registers the device when it has no token. It posts
  home every 20 seconds and sends system information every 300 seconds.
- `smithagent.bouncer.Bouncer` runs the configured checks. `ok()` returns only once
  they all pass, and retries every 10 seconds until then.
- `smithagent.police.Police` schedules a delayed `reboot now` while reported problems
  remain open. It cancels the reboot when the problems are solved. Restarts are
  enabled only after `enable_restarts()` is called, or after `run()` has been
  running for 15 minutes.
- `smithagent.updater.Updater` runs once a minute. When the target release differs
  from the current release, it fetches the release's packages, installs them with
  `apt`, and records the new release id. `status()` reports when the last update
  and the last upgrade happened.
- `smithagent.downloader.Downloader` starts downloads from the server in the
  background. Each download is throttled by a `RateLimiter`.
  `check_download_status()` reports `DOWNLOADING`, `SUCCESS` or `FAILED`.
- `smithagent.filemanager.FileManager` extracts tar archives and runs scripts and
  system commands. A command that fails raises `CommandFailed`.

The long-running components take an `asyncio.Event` in `run(shutdown)` and stop
when it is set.

## What this package does not do

The package installs no command: no daemon entry point wires these components
together, and there is no self-update program.

The package does not run the commands the server queues. `Postman` must be given a
commander object that provides `get_results()`, `insert_result(responses)` and
`execute_api_batch(commands)`. `Postman` passes the commands it receives to that
object.

The package offers no port tunnelling and no local control interface.

## Tests

```
pip install "smithagent[test]"
pytest
```