"""Connection wrappers, TCP/UDP/in-memory listeners, TLS helpers and WSGI middleware."""