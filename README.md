# revtun

Building blocks for a reverse proxy that exposes local servers behind a NAT
or firewall. It is a library. It has no command of its own and needs nothing
outside the standard library.

## Modules

- `revtun.log`: the process-wide `revtun` logger.
  - `init_log`, `set_log_file` and `set_log_level` configure it. Output goes
    to the console or to a file rotated at midnight.
  - `set_log_level` accepts `error`, `warn`, `info`, `debug` and `trace`.
    Any other name falls back to `warn`.
  - The functions `error`, `warn`, `info`, `debug` and `trace` write to it.
  - `PrefixLogger` puts `[prefix] ` tags in front of every message.
- `revtun.metric`:
  - `Counter` is a thread-safe counter.
  - `DateCounter` keeps one total per day for a fixed number of days, today
    first. It takes an optional `clock`, which is useful in tests.
- `revtun.util`:
  - `rand_id` and `rand_id_with_len` make random hex ids.
  - `get_auth_key` returns the MD5 hex digest of a token followed by a timestamp.
  - `canonical_addr` drops port 80 and 443 from an address.
  - `parse_range_numbers` expands lists such as `"1000-2000,2001,3000-3005"`.
    It raises `ValueError` on bad input.
- `revtun.version`:
  - `full` gives the version.
  - `proto`, `major` and `minor` parse a version string.
  - `less_than` compares two versions.
  - `compat` rejects clients older than 0.18.0.
- `revtun.net.conn`:
  - `Conn` wraps a socket or stream and carries its own log prefix.
  - `SharedConn` lets you peek at the first bytes of a stream.
  - `CloseNotifyConn` calls a callback once, when the connection closes.
  - `StatsConn` reports the bytes read and written when it closes.
  - `connect_tcp_server` and `connect_server` dial a server.
    `dial_tcp_by_proxy` and `connect_server_by_proxy` dial through an HTTP
    CONNECT proxy.
  - TLS is negotiated with a leading marker byte by `wrap_tls_client_conn`,
    `check_and_enable_tls_server_conn` and `connect_server_by_proxy_with_tls`.
- `revtun.net.listener`:
  - `TcpListener` / `listen_tcp` accept TCP connections.
  - `CustomListener` accepts connections that you feed it with `put_conn`.
- `revtun.net.udp`: `UdpListener` / `listen_udp` hand out one `FakeUdpConn`
  per remote address. A `FakeUdpConn` closes itself after it has been idle.
- `revtun.net.http`: WSGI middleware.
  - `BasicAuthMiddleware` and `http_basic_auth` check basic-auth credentials.
  - `GzipMiddleware` and `make_gzip_handler` compress responses with gzip.
- `revtun.vhost.router`: `VhostRouters` maps a domain and a location prefix to
  a payload. Longer locations match first.
- `revtun.vhost.vhost`: `VhostMuxer` hands each incoming connection to the
  `Listener` registered for its host and path, set up by a `VhostRouteConfig`.
  - Wildcard domains such as `*.example.com` are matched.
  - An unknown host gets a 404 page.
  - A failed auth check gets a 401.
- `revtun.vhost.https`:
  - `read_handshake` and `get_https_hostname` read the SNI host name from a
    TLS ClientHello.
  - `HttpsMuxer` routes connections by that name.
- `revtun.vhost.reverseproxy`: `ReverseProxy`, `ProxyRequest`, `HttpTransport`,
  `new_single_host_reverse_proxy` and `is_websocket_request`.
  - These proxy requests that arrive through `http.server`.
  - WebSocket upgrades are relayed as raw streams.
- `revtun.vhost.newhttp`: `HttpReverseProxy` picks a backend per request from
  registered routes.
  - It can rewrite the Host header, set extra headers and require basic auth.
  - `handler_class()` returns a `BaseHTTPRequestHandler` subclass to serve it.

## Example

```python
import socket
from http.server import ThreadingHTTPServer

from revtun.metric import DateCounter
from revtun.util import get_auth_key, parse_range_numbers
from revtun.vhost.newhttp import HttpReverseProxy
from revtun.vhost.router import VhostRouters
from revtun.vhost.vhost import VhostRouteConfig

ports = parse_range_numbers("6000-6002,7000")   # [6000, 6001, 6002, 7000]
key = get_auth_key("token", 1488720000)

traffic = DateCounter(7)
traffic.inc(1024)
print(traffic.last_days_count(3))               # [1024, 0, 0]

routers = VhostRouters()
routers.add("app.example.com", "/api", "api backend")
routers.add("app.example.com", "/", "web backend")
print(routers.get("app.example.com", "/api/users").payload)  # api backend

proxy = HttpReverseProxy()
proxy.register(VhostRouteConfig(
    domain="app.example.com",
    location="/",
    create_conn_fn=lambda: socket.create_connection(("127.0.0.1", 8080)),
))
ThreadingHTTPServer(("127.0.0.1", 8000), proxy.handler_class()).serve_forever()
```

## What it does not do

- There is no client or server program. The package provides no control
  channel between the two ends and no configuration-file loader.
- The `kcp` protocol is not available. `connect_server` raises `ValueError`
  for it.
- The `websocket` transport is not available. `connect_server_by_proxy`
  raises `ValueError` for it.

## Tests

```
pip install -e .[test]
pytest
```