# opamp

Building blocks for managing telemetry agents over OpAMP: an asyncio server
that accepts agent connections over WebSocket or plain HTTP, in-memory
bookkeeping of connected agents and the configs they should run, and helpers
for supervising an agent process.

## Modules

- `opamp.server` – `OpAMPServer(logger=None)`.
  - `attach(settings)` returns an aiohttp request handler for your own
    application.
  - `await start(settings)` runs its own listener from `StartSettings`
    (`listen_endpoint`, `listen_path`, `ssl_context`). The default path is
    `/v1/opamp`. Starting twice raises `AlreadyStartedError`.
  - `await stop()` closes open WebSockets and the listener.

  Requests with `Content-Type: application/x-protobuf` are handled as
  single plain HTTP exchanges. A `Content-Encoding: gzip` body is
  decompressed, and the response is gzipped when `Accept-Encoding: gzip` is
  sent. Every other request is upgraded to a WebSocket.

  `Settings.parse_message` turns received bytes into a message object, and
  responses are serialized with `bytes(response)`. An empty `instance_uid` on
  the response is filled in from the request's. `compress_gzip` and
  `decompress_gzip` are exported too.
- `opamp.callbacks`:
  - `Callbacks.on_connecting` returns a `ConnectionResponse` that accepts the
    connection, or rejects it with a status code and headers.
  - `ConnectionCallbacks` has `on_connected`, `on_message` and
    `on_connection_close`. Each can be given as a function or overridden, and
    may be sync or async.
  - `Logger` is the logging protocol (`debug`, `error`), and `NopLogger`
    discards everything.
- `opamp.connection` – `WSConnection` (sends are serialized with a lock and
  framed with the WebSocket header) and `HTTPConnection`, whose `send` and
  `disconnect` raise `InvalidHTTPConnectionError`.
- `opamp.wsmessage` – `encode_ws_message` and `decode_ws_message` add and strip
  the zero-varint header. Payloads without a header are accepted; a non-zero
  header raises `WSMessageError`.
- `opamp.retryafter` – `extract_retry_after_header(status_code, headers)`.
- `opamp.messages` – message dataclasses (`AgentToServer`, `ServerToAgent`,
  `AgentRemoteConfig`, …), the enums `AgentCapabilities`, `ServerToAgentFlags`
  and `RemoteConfigStatuses`, and the comparisons `is_equal_remote_config`,
  `is_equal_config_set` and `is_equal_config_file`.
- `opamp.anyvalue` – `AnyValue`, `KeyValue`, `ArrayValue`, `KeyValueList`,
  and the comparisons `is_equal_any_value` and `is_equal_key_value`.
- `opamp.agent` – `Agent` records one agent's status, health start time,
  effective config and custom instance config.
  - `update_status` fills in the response: it requests a full state report
    when an update was lost and sends the remote config when it differs.
  - `await set_custom_config(config, notifier)` sends a changed config to the
    agent. The notifier is called after the agent's next status report, or
    straight away when nothing changed.
- `opamp.agents` – `Agents`, a thread-safe registry keyed by instance id and by
  connection, and the shared `ALL_AGENTS` instance. It also provides
  `is_equal_agent_descr` and `is_equal_attrs`.
- `opamp.opampsrv` – `AgentManagementServer` joins `OpAMPServer` and `Agents`.
  `create_server_tls_config(certs_dir)` builds an `ssl.SSLContext`, and
  `PrefixLogger` logs through `logging` with a prefix.
- `opamp.config` – `load_supervisor_config(path="supervisor.yaml")` reads
  `server.endpoint` and `agent.executable` into a `SupervisorConfig`.
- `opamp.commander` – `Commander(config, *args)` starts the agent executable
  with stdout and stderr going to `agent.log`. It also offers `stop(timeout)`,
  which terminates the process and kills it after the timeout, and `restart`,
  `done`, `pid`, `exit_code` and `is_running`.
- `opamp.healthchecker` – `HTTPHealthChecker(endpoint).check(timeout)` raises
  `HealthCheckError` on any status other than 200.
- `opamp.netutil`, `opamp.tcpproxy`:
  - `get_available_local_address`, `host_port_from_addr` and
    `wait_for_endpoint` help with local endpoints.
  - `TCPProxy` forwards connections and counts the bytes in each direction.

## Running the example server

```
opamp-server
```

This listens on `127.0.0.1:4320` at `/v1/opamp` and registers every agent
that reports a status. TLS is used when `../certs` contains
`certs/ca.cert.pem` plus `server_certs/server.cert.pem` and
`server_certs/server.key.pem`. Otherwise the server runs without TLS and logs
that. Press Ctrl+C to stop it.

Messages to and from this server are encoded as JSON objects whose fields
mirror the `opamp.messages` dataclasses. Byte fields are base64.

## Examples

```python
from opamp.wsmessage import decode_ws_message, encode_ws_message

frame = encode_ws_message(b"\x0a\x04abcd")
assert frame[0] == 0
assert decode_ws_message(frame, lambda body: body) == b"\x0a\x04abcd"
```

```python
from datetime import timedelta
from opamp.retryafter import extract_retry_after_header

assert extract_retry_after_header(503, {"Retry-After": "30"}) == timedelta(seconds=30)
assert extract_retry_after_header(502, {"Retry-After": "30"}) is None
```

`extract_retry_after_header` returns a `timedelta`, or `None` when the status
is not 429 or 503, or when no positive delay can be read. It understands both
delay-seconds and the three HTTP-date forms.

## What the package does not do

- It has no protobuf encoding of OpAMP messages. `OpAMPServer` leaves encoding
  to `Settings.parse_message` and `bytes(response)`, and the example server
  uses JSON.
- It has no OpAMP client and no agent.
- It has no web UI for browsing agents.
- It has no supervisor command. Configuration loading, process control and
  health checks are provided as separate pieces.