"""
=============================================================================
STATIC FILE HANDLER
=============================================================================

Serves files from the document root, byte for byte. Used by both listeners:
the TLS listener for every path, the plaintext listener for the well-known
prefix only.

=============================================================================
FROM URL PATH TO FILE
=============================================================================

    request.path           "/docs/../img//logo.png"
         │
         ▼  posixpath.normpath (".." and "//" resolved lexically)
    url path               "/img/logo.png"
         │
         ▼  must still start with the handler's prefix, else fallback
         │
         ▼  root_dir / "img/logo.png", then resolve() (follows symlinks)
    file path              /srv/public/img/logo.png
         │
         ▼  must still be inside root_dir, else 403

Lexical normalization means ".." can never climb out of the root, so the
resolve() check only ever trips on a symlink pointing outside the document
root. That is refused with 403 and logged as a warning: someone put it
there.

=============================================================================
WHAT A REQUEST CAN GET BACK
=============================================================================

    200  the file (Content-Type from the extension, Last-Modified,
         Accept-Ranges: bytes)
    206  one byte range of the file (Range: bytes=0-99, bytes=100-,
         bytes=-100)
    304  If-Modified-Since is not older than the file
    301  a directory asked for without its trailing slash
    403  symlink escape, or the OS refused to open the file
    405  methods other than GET and HEAD
    416  Range lies entirely outside the file
    ...  anything missing goes to the fallback handler (404 "Not found")

Directories serve their index.html; a directory without one is treated as
missing. There is no directory listing.

HEAD gets the same headers as GET, including Content-Length, without
reading the file.

=============================================================================
"""

import logging
import posixpath
from pathlib import Path
from typing import Optional, Union
from datetime import datetime, timezone

from ..http.request import HTTPRequest
from ..http.response import (
    HTTPResponse, ResponseBuilder, HTTPStatus,
    not_found, forbidden, internal_error, method_not_allowed, error_response,
    format_http_date, parse_http_date,
)
from ..http.router import Handler
from ..http.mime_types import get_content_type


logger = logging.getLogger(__name__)

ALLOWED_METHODS = ["GET", "HEAD"]


class RangeNotSatisfiable(Exception):
    """The Range header asks only for bytes the file does not have."""


def parse_range(header: str, size: int) -> Optional[tuple[int, int]]:
    """
    Parse a single-range Range header against a file size.

    Returns:
        (first, last) byte positions, inclusive; None when the header should
        be ignored (malformed, multiple ranges, other units, empty file).

    Raises:
        RangeNotSatisfiable: Well-formed but outside the file.

    Examples:
        >>> parse_range("bytes=0-4", 10)
        (0, 4)
        >>> parse_range("bytes=-3", 10)
        (7, 9)
        >>> parse_range("bytes=5-", 10)
        (5, 9)
    """
    unit, _, ranges = header.strip().partition("=")
    if unit.strip().lower() != "bytes" or "," in ranges or size == 0:
        return None

    first, sep, last = ranges.strip().partition("-")
    if not sep:
        return None
    first, last = first.strip(), last.strip()

    if not first:
        # Suffix range: the final N bytes
        if not last.isdigit():
            return None
        length = int(last)
        if length == 0:
            raise RangeNotSatisfiable(header)
        return max(0, size - length), size - 1

    if not first.isdigit() or (last and not last.isdigit()):
        return None

    start = int(first)
    end = int(last) if last else size - 1
    if start >= size:
        raise RangeNotSatisfiable(header)
    if end < start:
        return None
    return start, min(end, size - 1)


def _default_fallback(request: HTTPRequest) -> HTTPResponse:
    return not_found()


class StaticFileHandler:
    """
    Handler for serving static files.

    Usage:
        static = StaticFileHandler("public", prefix="/.well-known/")
        router.get("/.well-known/*path")(static.handle)

    The handler maps request.path itself onto the root (no prefix is
    stripped): /.well-known/x is read from <root>/.well-known/x.
    """

    def __init__(
        self,
        root_dir: Union[str, Path],
        prefix: str = "/",
        index_file: str = "index.html",
        fallback: Optional[Handler] = None,
    ):
        """
        Args:
            root_dir: Directory to serve. Must exist.
            prefix: Only paths still under this prefix after normalization
                    are served; "/.well-known/../secret" is not.
            index_file: Served for directory requests.
            fallback: Called for anything that does not exist.
        """
        self.root_dir = Path(root_dir).resolve()
        self.prefix = prefix if prefix.endswith("/") else prefix + "/"
        self.index_file = index_file
        self.fallback = fallback or _default_fallback

        if not self.root_dir.is_dir():
            raise ValueError(f"Document root does not exist: {root_dir}")

    def __call__(self, request: HTTPRequest) -> HTTPResponse:
        return self.handle(request)

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        if request.method not in ALLOWED_METHODS:
            return method_not_allowed(ALLOWED_METHODS)

        if "\x00" in request.path or not request.path.startswith("/"):
            return self.fallback(request)

        # ─────────────────────────────────────────────────────────────────
        # NORMALIZE
        # ─────────────────────────────────────────────────────────────────
        wants_directory = request.path.endswith("/")
        url_path = posixpath.normpath("/" + request.path.lstrip("/"))

        if not (url_path.rstrip("/") + "/").startswith(self.prefix):
            return self.fallback(request)

        # ─────────────────────────────────────────────────────────────────
        # RESOLVE AND CONTAIN
        # ─────────────────────────────────────────────────────────────────
        full_path = self._resolve(url_path)
        if full_path is None:
            logger.warning(f"Refusing {request.path!r}: resolves outside {self.root_dir}")
            return forbidden()

        # ─────────────────────────────────────────────────────────────────
        # DIRECTORIES
        # ─────────────────────────────────────────────────────────────────
        if full_path.is_dir():
            if not wants_directory:
                return self._redirect_to_directory(request)

            index_path = self._resolve(posixpath.join(url_path, self.index_file))
            if index_path is None:
                logger.warning(f"Refusing {request.path!r}: index resolves outside {self.root_dir}")
                return forbidden()
            if not index_path.is_file():
                return self.fallback(request)
            full_path = index_path

        elif wants_directory or not full_path.is_file():
            return self.fallback(request)

        return self._serve_file(full_path, request)

    def _resolve(self, url_path: str) -> Optional[Path]:
        """
        Map a normalized URL path to a file path inside root_dir.

        Returns None when the real path escapes the root.
        """
        full_path = (self.root_dir / url_path.lstrip("/")).resolve()
        try:
            full_path.relative_to(self.root_dir)
        except ValueError:
            return None
        return full_path

    def _redirect_to_directory(self, request: HTTPRequest) -> HTTPResponse:
        """301 to the same target with a slash after the path."""
        raw_path, sep, query = request.target.partition("?")
        return ResponseBuilder().redirect(raw_path + "/" + sep + query, permanent=True).build()

    def _serve_file(self, path: Path, request: HTTPRequest) -> HTTPResponse:
        try:
            stat = path.stat()
        except FileNotFoundError:
            return self.fallback(request)  # Removed since is_file()
        except PermissionError:
            return forbidden()

        size = stat.st_size
        mtime = datetime.fromtimestamp(int(stat.st_mtime), tz=timezone.utc)
        last_modified = format_http_date(mtime)

        # ─────────────────────────────────────────────────────────────────
        # CONDITIONAL GET
        # ─────────────────────────────────────────────────────────────────
        since = parse_http_date(request.get_header("if-modified-since"))
        if since is not None and mtime <= since:
            return (ResponseBuilder()
                .status(HTTPStatus.NOT_MODIFIED)
                .header("Last-Modified", last_modified)
                .build())

        # ─────────────────────────────────────────────────────────────────
        # RANGE
        # ─────────────────────────────────────────────────────────────────
        byte_range = None
        range_header = request.get_header("range")
        if range_header:
            try:
                byte_range = parse_range(range_header, size)
            except RangeNotSatisfiable:
                response = error_response(HTTPStatus.RANGE_NOT_SATISFIABLE)
                response.headers["Content-Range"] = f"bytes */{size}"
                return response

        builder = (ResponseBuilder()
            .content_type(get_content_type(path))
            .header("Last-Modified", last_modified)
            .header("Accept-Ranges", "bytes"))

        if byte_range is None:
            first, length = 0, size
        else:
            first, last = byte_range
            length = last - first + 1
            builder.status(HTTPStatus.PARTIAL_CONTENT)
            builder.header("Content-Range", f"bytes {first}-{last}/{size}")

        builder.header("Content-Length", str(length))

        if request.method == "HEAD":
            return builder.build()

        try:
            with open(path, "rb") as f:
                if first:
                    f.seek(first)
                content = f.read(length)
        except PermissionError:
            return forbidden()
        except FileNotFoundError:
            return self.fallback(request)
        except OSError as e:
            logger.error(f"Error reading {path}: {e}")
            return internal_error()

        if len(content) != length:
            # Truncated while we were reading it
            builder.header("Content-Length", str(len(content)))

        return builder.body(content).build()
