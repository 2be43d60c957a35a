"""Static file server for a ZipFileSystem, built on http.server."""

import html
import logging
import re
from email.utils import format_datetime
from http.server import ThreadingHTTPServer, BaseHTTPRequestHandler
from urllib.parse import unquote, urlparse

from zipfs import INDEX_NAME, BackendError, NotFoundError, ZipFileSystem, ZipResource

log = logging.getLogger("zipserve.server")

ALLOW = "GET, HEAD"
_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


def _parse_range(header: str, size: int) -> tuple[int, int] | None:
    """Parse a single-range Range header into an inclusive (start, end).

    Returns None when the header should be ignored (malformed or multiple
    ranges) and raises ValueError when the range cannot be satisfied.
    """
    m = _RANGE_RE.match(header.strip())
    if not m:
        return None
    first, last = m.groups()
    if not first and not last:
        return None
    if not first:
        # Suffix range: the last N bytes.
        length = int(last)
        if length == 0 or size == 0:
            raise ValueError(header)
        return max(size - length, 0), size - 1
    start = int(first)
    if start >= size:
        raise ValueError(header)
    end = min(int(last), size - 1) if last else size - 1
    if end < start:
        raise ValueError(header)
    return start, end


class ZipFileHandler(BaseHTTPRequestHandler):
    """HTTP request handler serving files out of a ZipFileSystem."""

    fs: ZipFileSystem

    def log_message(self, format, *args):
        # Successful requests are noise at INFO.
        if len(args) >= 2 and str(args[1])[:1] in ("2", "3"):
            log.debug(format, *args)
        else:
            log.info(format, *args)

    def _send(self, status: int, body: bytes, content_type: str, include_body: bool = True,
              headers: dict[str, str] | None = None):
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        for key, value in (headers or {}).items():
            self.send_header(key, value)
        self.end_headers()
        if include_body:
            self.wfile.write(body)

    def _try(self, fn, include_body: bool = True):
        """Call fn(), returning its result. On filesystem errors, send an error response and return None."""
        try:
            return fn()
        except NotFoundError:
            self._send(404, b"Not Found", "text/plain", include_body)
            return None
        except BackendError as e:
            self._send(500, str(e).encode(), "text/plain", include_body)
            return None

    def do_GET(self):
        self._handle_get(include_body=True)

    def do_HEAD(self):
        self._handle_get(include_body=False)

    def _handle_get(self, include_body: bool):
        parsed = urlparse(self.path)
        path = unquote(parsed.path)
        if not path.startswith("/"):
            path = "/" + path

        f = self._try(lambda: self.fs.open(path), include_body)
        if f is None:
            return

        with f:
            if f.stat().is_dir:
                if not path.endswith("/"):
                    location = parsed.path + "/"
                    if parsed.query:
                        location += "?" + parsed.query
                    self.send_response(301)
                    self.send_header("Location", location)
                    self.send_header("Content-Length", "0")
                    self.end_headers()
                    return
                try:
                    index = self.fs.open(path.rstrip("/") + "/" + INDEX_NAME)
                except NotFoundError:
                    return self._send_listing(path, f, include_body)
                with index:
                    return self._send_file(index, include_body)
            return self._send_file(f, include_body)

    def _send_listing(self, path: str, f: ZipResource, include_body: bool):
        """Render a directory page. The handle never lists children."""
        title = html.escape(path)
        lines = [f"<html><head><title>{title}</title></head><body>"]
        lines.append(f"<h1>{title}</h1><ul>")
        for child in f.readdir():
            name = html.escape(child.name)
            lines.append(f'<li><a href="{name}">{name}</a></li>')
        lines.append("</ul></body></html>")
        body = "\n".join(lines).encode("utf-8")
        self._send(200, body, "text/html; charset=utf-8", include_body)

    def _send_file(self, f: ZipResource, include_body: bool):
        info = f.stat()
        size = info.size
        content_type = info.content_type
        if content_type.startswith("text/"):
            content_type += "; charset=utf-8"
        headers = {
            "Last-Modified": format_datetime(info.mtime, usegmt=True),
            "Accept-Ranges": "bytes",
        }

        range_header = self.headers.get("Range")
        if range_header:
            try:
                byte_range = _parse_range(range_header, size)
            except ValueError:
                headers["Content-Range"] = f"bytes */{size}"
                return self._send(416, b"Range Not Satisfiable", "text/plain", include_body, headers)
            if byte_range is not None:
                start, end = byte_range
                f.seek(start)
                body = f.read(end - start + 1)
                headers["Content-Range"] = f"bytes {start}-{end}/{size}"
                return self._send(206, body, content_type, include_body, headers)

        self._send(200, f.read(), content_type, include_body, headers)

    def _method_not_allowed(self):
        self.send_response(405)
        self.send_header("Allow", ALLOW)
        self.send_header("Content-Length", "0")
        self.end_headers()

    do_OPTIONS = lambda self: self._method_not_allowed()
    do_PUT = lambda self: self._method_not_allowed()
    do_DELETE = lambda self: self._method_not_allowed()
    do_POST = lambda self: self._method_not_allowed()
    do_PATCH = lambda self: self._method_not_allowed()


def make_server(fs: ZipFileSystem, host: str = "localhost", port: int = 8080) -> ThreadingHTTPServer:
    """Create a threaded HTTP server for the given filesystem."""
    handler_class = type("Handler", (ZipFileHandler,), {"fs": fs})
    return ThreadingHTTPServer((host, port), handler_class)
