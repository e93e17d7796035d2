# devicewatch

devicewatch is a small monitoring service. It keeps a register of devices in
an SQLite database, accepts messages posted by those devices, checks each
message against the tag rules defined for its device, and answers report
queries over a JSON HTTP API.

## What it does

- **Devices** – create, read, update and delete devices. A device has a name,
  a type, an IP address and a list of responsible user ids.
- **Tags** – rules attached to a device. A tag holds a regular expression, an
  index into the match (0 is the whole match, 1 and up are groups), a
  comparison (`=` compares text, `<` and `>` compare numbers), a value to
  compare with, a subject and a severity level. The first tag of the device
  whose expression matches decides: if its comparison holds, the stored
  message gets the tag's severity level. A `<` or `>` tag that fires creates
  the reverse rule with subject `OK` and severity `info`; a firing tag whose
  subject is `OK` deletes itself.
- **Messages** – devices post messages; the sender is looked up by its IP
  address among the registered devices (unknown addresses are stored under
  device id 0).
- **Reports** – all messages of a device, all messages in a time period,
  message counts per device for one message type, and a thirty-day summary
  per device and message type (only pairs with more than 100 messages in the
  window).

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Configuration

Settings are read from the environment; a `.env` file in the working
directory is loaded first if present. Durations are written like `300ms`,
`30s`, `5m` or `1h30m`. Missing required variables or bad values stop the
command with `configuration error: ...` and exit status 1.

| Variable | Required | Meaning |
| --- | --- | --- |
| `DB_DATA_SOURCE` | yes | SQLite database file (or a `file:` URI, or `:memory:`) |
| `DB_PATH_TO_MIGRATION` | yes | directory of migration files, optionally prefixed with `file://` |
| `DB_APPLICATION_SCHEMA` | yes | schema name; must be a plain identifier |
| `LOG_LEVEL` | yes | `debug`, `info`, `warn`, `error`, `dpanic`, `panic` or `fatal` |
| `LOG_SERVICE_NAME` | yes | service name, also the log file name |
| `LOG_PATH` | no | directory for the log file; created if missing |
| `APP_SHUTDOWN_TIMEOUT` | yes | how long shutdown may take |
| `SERVER_JWT_KEY` | yes | key used to verify bearer tokens |
| `SERVER_ADDR` | yes | address the API listens on, e.g. `:8080` |
| `SERVER_TOKEN_LIFE_TIME` | yes | read and checked, but not used by any route |
| `SERVER_LOG_QUERYS` | no | `true`, `1`, `t` … to log every request |
| `SERVICE_NOTIFICATION_PERIOD` | yes | read and checked, kept on the messages service |

A minimal `.env`:

```
LOG_LEVEL=info
LOG_SERVICE_NAME=devicewatch
LOG_PATH=_logs
APP_SHUTDOWN_TIMEOUT=10s
SERVER_JWT_KEY=secret
SERVER_ADDR=:8080
SERVER_TOKEN_LIFE_TIME=24h
SERVICE_NOTIFICATION_PERIOD=1m
DB_DATA_SOURCE=devicewatch.db
DB_PATH_TO_MIGRATION=migrations
DB_APPLICATION_SCHEMA=devicewatch
```

Logs are JSON lines written to standard output and to
`<LOG_PATH>/<LOG_SERVICE_NAME>.log`. With an unknown level, or when the log
directory or file cannot be created, logging falls back to standard output at
debug level.

## Database schema

The package ships no migrations; you supply them. At start-up every file in
`DB_PATH_TO_MIGRATION` named `<version>_<title>.up.sql` that is newer than the
recorded version is run in version order, and the version is kept in a
`schema_migrations` table. A failed migration leaves the version marked dirty
and later start-ups refuse to continue until it is fixed by hand.

The repositories expect these tables, for example in `1_init.up.sql`:

```sql
create table devices (
    id integer primary key,
    name text not null,
    device_type text not null,
    address text not null unique,
    responsible text not null,          -- JSON array of user ids
    created_at text, updated_at text, deleted_at text
);
create table tags (
    id integer primary key,
    name text not null,
    device_id integer not null,
    regexp text not null,
    compare_type text not null,
    value text not null,
    array_index integer not null,
    subject text not null,
    severity_level text not null,
    created_at text, updated_at text, deleted_at text
);
create table messages (
    id integer primary key,
    got_at text not null,
    device_id integer not null,
    message text not null,
    message_type text not null,
    severity_level text,
    component text
);
```

A unique-constraint violation when creating a device or tag is reported as
`DeviceExistsError`.

## Running

```
devicewatch
```

The command applies migrations, starts the API on `SERVER_ADDR` and a metrics
endpoint on port 9081 (`/metrics`, Prometheus text format), and runs until it
receives SIGINT, SIGTERM or SIGQUIT. It then stops the API within
`APP_SHUTDOWN_TIMEOUT`. It exits with 0 after a clean shutdown and 1 on a
configuration, database or shutdown error.

## HTTP API

All routes live under `/monolith/v1`. Request bodies are JSON (form bodies are
accepted too); every response is JSON and carries an `X-Request-ID` header.
Errors have the shape `{"error": true, "data": "<message>"}`: 401 for a missing
or bad token, 422 for a body that fails validation, 400 for an update with
nothing to change, 404 for an unknown route, 500 for a storage failure.

Device, tag and report routes need a bearer token signed (HS256/384/512) with
`SERVER_JWT_KEY` whose claims hold a numeric `localID`:

```
Authorization: Bearer token
```

| Method | Path | Body |
| --- | --- | --- |
| POST | `/devices/create` | `name`, `device_type`, `address` (an IP), `responsible` |
| GET | `/devices/read` | – |
| PUT | `/devices/update` | `id` and at least one of the create fields |
| DELETE | `/devices/delete` | `id` |
| POST | `/tags/create` | `name`, `device_id`, `regexp`, `compare_type` (`<`, `>` or `=`), `value`, `array_index`, `subject`, optional `severity_level` |
| GET | `/tags/read` | – |
| PUT | `/tags/update` | `id` and at least one of the create fields |
| DELETE | `/tags/delete` | `id` |
| GET | `/reports/get_all_by_device_id` | `device_id` |
| GET | `/reports/get_all_by_period` | `start_time`, `end_time` (RFC 3339 with offset) |
| GET | `/reports/get_count_by_message_type` | `message_type` |
| GET | `/reports/month_report` | – |
| POST | `/messages/send_msg` | `message`, `message_type`, `component`, `address` (an IP) |

`/messages/send_msg` needs no token and answers `202` in the body. It counts
incoming requests (`ingress_requests_total`) and sent responses
(`egress_responses_total`); these counters are what `/metrics` serves.

## Using it as a library

- `devicewatch.config.load_config(environ)` builds a `Config` from a mapping;
  `parse_duration` parses durations.
- `devicewatch.database.Database` opens the SQLite database and runs
  migrations; `DevicesRepo`, `TagsRepo` and `MessagesRepo` open transactions
  on it, usable as context managers.
- `DevicesService`, `TagsService` and `MessagesService` run the operations;
  `DeviceRegistry` caches devices by address.
- `devicewatch.web.server.create_app(...)` builds the Flask application and
  `Server(app, addr)` serves it with `run()` / `stop(timeout)`.
- `devicewatch.app.run(config, stop_event)` starts everything and waits for a
  `threading.Event` before shutting down.

Further pieces are available but not started by the `devicewatch` command:

- `devicewatch.device_checker.DeviceChecker` polls
  `http://<address>/healthcheck` of every registered device every `period`
  seconds (`start()` / `stop()` / `check_once()`) and stores an `error`
  message for a device that answers with a status other than 200, or that
  cannot be reached (which also ends that round).
- `devicewatch.mail` has `Email`, `SmtpSender` and `HttpSender` for sending
  mail over SMTP or as JSON to an HTTP gateway.
- `devicewatch.notification.NotificationService` keeps recipients per device.

## What it does not do

- There are no user accounts and no login route: the service only verifies
  bearer tokens; issuing them is up to you. `SERVER_TOKEN_LIFE_TIME` is not
  used.
- No notifications are sent. A matched tag is reflected only in the stored
  message's severity level; the mail senders are not wired into message
  handling.
- The health checks are not scheduled by the command.
- Storage is SQLite only, and no migration files are included.