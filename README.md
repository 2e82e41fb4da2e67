# narctrack

A small command-line time tracker. You tell it what you are working on,
and a background daemon records each period spent on that activity as a
row in a CSV file. You can then total the time per day and activity.

## Installation

```
pip install narctrack
```

This installs the `narc` command.

## Usage

Start an activity. If the daemon is not answering, the command starts it
in the background (`python -m narctrack.cli daemon --log-to-file`) and
waits about three seconds for it to come up:

```
narc start writing the quarterly report
```

The words after `start` are joined with spaces to form the name. Starting
a new activity ends the running period of the previous one.

`-m` / `--meeting` starts in meeting mode, where user-idle and
user-active events do not end or restart the period (system sleep and
wake still do):

```
narc start -m design review
```

Check what is running, and stop it:

```
narc status
narc end
```

Total tracked time as CSV rows of `date,activity,hours`:

```
narc aggregate
narc aggregate 2024-03-01 2024-03-31
narc agg yesterday today --round 6
```

- Dates are `YYYY-MM-DD`, or `yesterday`, `today` or `tomorrow`. Only
  periods starting between midnight (UTC) of the start date and midnight
  (UTC) of the end date are counted; either bound may be left out.
- Hours are rounded up to a fraction of an hour set by `--round`, in
  minutes (0 to 60, default 15; `0` disables rounding). The fraction is
  60 divided by the value, rounded down, so `--round 15` gives quarter
  hours.
- Periods are credited to the day on which they started.

Stop the daemon:

```
narc terminate
```

Run the daemon in the foreground yourself; with `--log-to-file` it logs
to the configured log file instead of standard error:

```
narc daemon
narc daemon --log-to-file
```

The daemon listens on all interfaces at the port taken from the end of
`serverBaseUrl` (port 80 if none is given).

## Configuration

Settings live in `~/.narc/config.yaml`, which is created empty when
missing. Data and logs are kept in `~/.narc` by default.

```
narc config show
narc config get idleTimeout
narc config set idleTimeout 10m
narc config set idleTimeout default
```

| Option          | Default                  | Meaning                                   |
|-----------------|--------------------------|-------------------------------------------|
| `serverBaseUrl` | `http://localhost:53300` | Address of the daemon                     |
| `storageType`   | `CSV`                    | Storage backend (only `CSV`)              |
| `csvPath`       | `~/.narc/narc.csv`       | File the tracked periods are written to   |
| `logPath`       | `~/.narc/narc.log`       | Daemon log file                           |
| `idleTimeout`   | `5m0s`                   | Inactivity after which the user is idle   |

`config set` checks the whole file before writing it: unknown option
names are rejected, `serverBaseUrl` must be a URL, `storageType` must be
`CSV`, the paths must be file paths, and `idleTimeout` must be a duration
such as `90s`, `10m` or `1h30m` of at least one second. Setting a value
to `default` removes it from the file so the default applies again.
After a change the daemon is asked to reload its configuration; it
restarts its server and resumes the activity that was running.

`config get` prints the value of one option, or a message saying that no
such option exists.

## HTTP interface

The daemon answers plain-text requests:

| Request           | Effect                                                       |
|-------------------|--------------------------------------------------------------|
| `GET /up`         | Answers `OK`                                                 |
| `POST /start`     | Starts the activity named in the body; `?ignoreIdle=true` for meeting mode |
| `POST /end`       | Ends the current activity                                    |
| `POST /terminate` | Ends the current activity and stops the daemon               |
| `POST /reload`    | Ends the current activity, reloads config and resumes it     |
| `GET /status`     | Describes the current activity and how long it has run       |
| `GET /aggregate`  | CSV totals; query `start`, `end` (`YYYY-MM-DD`) and `round`  |

`narctrack.client.Client` wraps these calls and raises `ClientError` on
connection failures or non-200 answers.

## What is not included

The package has no built-in way to read how long the user has been idle
or to notice the system going to sleep. The daemon started by `narc`
creates its `narctrack.idle.Monitor` without an idle source or sleep
watcher, so it treats the user as always active and the system as always
awake: a period runs from `narc start` until `narc end`, another `start`,
`terminate` or a reload. The `idleTimeout` setting is passed to the
monitor but has no effect without an idle source.

Code that can supply these may give them to `Monitor` directly:

```python
import threading
from narctrack.idle import Monitor

def seconds_since_last_input() -> float:
    return 0.0  # replace with a real measurement

monitor = Monitor(300.0, idle_seconds=seconds_since_last_input)
states = monitor.start(threading.Event())  # a queue of IdleState changes
```

A `narctrack.daemon.Daemon` built on that queue starts and ends periods
as the user becomes active or idle.

## Library use

The pieces can also be used directly, for example to read a data file:

```python
from narctrack.store import CsvStore
from narctrack.model import activities_to_duration_rows

with open("narc.csv", "r+", newline="") as handle:
    store = CsvStore(handle)
    for row in activities_to_duration_rows(store.get_activities(None, None)):
        print(row.date, row.name, row.duration)
```