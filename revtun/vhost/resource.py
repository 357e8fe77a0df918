"""Canned HTTP responses written straight onto a connection."""

from __future__ import annotations

from .. import version

NOT_FOUND = """<!DOCTYPE html>
<html>
<head>
<title>Not Found</title>
<style>
    body {
        width: 35em;
        margin: 0 auto;
        font-family: Tahoma, Verdana, Arial, sans-serif;
    }
</style>
</head>
<body>
<h1>The page you visit not found.</h1>
<p>Sorry, the page you are looking for is currently unavailable.<br/>
Please try again later.</p>
<p>The server is powered by frp.</p>
<p><em>Faithfully yours, frp.</em></p>
</body>
</html>
"""


def not_found_response() -> bytes:
    """A complete HTTP/1.0 404 response; the body ends with the connection."""
    head = (
        "HTTP/1.0 404 Not Found\r\n"
        "Content-Type: text/html\r\n"
        f"Server: frp/{version.full()}\r\n"
        "\r\n"
    )
    return head.encode("latin-1") + NOT_FOUND.encode()


def no_auth_response() -> bytes:
    """A complete HTTP/1.1 401 response asking for basic credentials."""
    return (
        b"HTTP/1.1 401 Not authorized\r\n"
        b"Content-Length: 0\r\n"
        b'WWW-Authenticate: Basic realm="Restricted"\r\n'
        b"\r\n"
    )