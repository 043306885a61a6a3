import codecs
import html
import logging
import re
from html.parser import HTMLParser
from typing import Iterable, Mapping, Optional

from analytics_proxy.analytics.decoding import decode_body
from analytics_proxy.exceptions import ContentDecodeError

logger = logging.getLogger(__name__)

# Stop iterating over the document after some "reasonable" point.
TOKEN_CUTOFF = 100

_CHARSET_RE = re.compile(r"charset=[\"']?([\w.:-]+)", re.IGNORECASE)

_START = "start"
_END = "end"
_SELF_CLOSING = "self-closing"
_TEXT = "text"
_OTHER = "other"

# Newer html.parser releases read <title> as escapable raw text themselves.
_NATIVE_RCDATA_TITLE = "title" in getattr(HTMLParser, "RCDATA_CONTENT_ELEMENTS", ())


class _ScanFinished(Exception):
    def __init__(self, title: str):
        self.title = title


class _TitleScanner(HTMLParser):
    """Walks the document token by token, stopping as soon as the outcome is known.

    Consecutive character data callbacks are merged into a single text token,
    which is only emitted once the next non-text token (or the end of input)
    is reached. The contents of <title> are raw text: markup inside it is
    part of the title, not tokens of its own.
    """

    def __init__(self, cutoff: int = TOKEN_CUTOFF):
        super().__init__(convert_charrefs=True)
        self.cutoff = cutoff
        self.steps = 0
        self._text: list[str] = []
        self._after_title = False
        self._unescape_text = False

    def _token(self, kind: str, data: str = "") -> None:
        if kind != _TEXT:
            self._flush_text()

        # The token right after a <title> tag is consumed here, whatever it is.
        if self._after_title:
            self._after_title = False
            self._unescape_text = False
            if kind == _TEXT:
                raise _ScanFinished(data)
            return

        if self.steps >= self.cutoff:
            raise _ScanFinished("")
        self.steps += 1

        if kind == _START and data == "title":
            self._after_title = True
            if not _NATIVE_RCDATA_TITLE:
                # Raw text mode delivers the contents unescaped.
                self.set_cdata_mode("title")
                self._unescape_text = True
        elif kind == _END and data == "head":
            # We reached the end of the <head> tag, but never found a <title>.
            raise _ScanFinished("")

    def _flush_text(self) -> None:
        if self._text:
            text = "".join(self._text)
            self._text = []
            if self._unescape_text:
                self._unescape_text = False
                text = html.unescape(text)
            self._token(_TEXT, text)

    def finish(self) -> None:
        self.close()
        self._flush_text()

    def handle_starttag(self, tag, attrs):
        self._token(_START, tag)

    def handle_startendtag(self, tag, attrs):
        self._token(_SELF_CLOSING, tag)

    def handle_endtag(self, tag):
        self._token(_END, tag)

    def handle_data(self, data):
        self._text.append(data)

    def handle_comment(self, data):
        self._token(_OTHER)

    def handle_decl(self, decl):
        self._token(_OTHER)

    def handle_pi(self, data):
        self._token(_OTHER)

    def unknown_decl(self, data):
        self._token(_OTHER)


def _charset(content_type: str) -> str:
    match = _CHARSET_RE.search(content_type)
    if match:
        try:
            return codecs.lookup(match.group(1)).name
        except LookupError:
            pass
    return "utf-8"


def extract_title(stream: Iterable[bytes], content_type: Optional[str]) -> str:
    """Returns the text of the first <title> element of an HTML document.

    Only documents whose content type contains ``text/html`` are scanned; for
    anything else the stream is not touched. The scan gives up with an empty
    string once it reaches ``</head>``, the end of the document, a decode or
    parse error, or the token cutoff. No exception is raised.
    """
    # The <title> tag can only be extracted from an HTML response body.
    if not content_type or "text/html" not in content_type:
        return ""

    decoder = codecs.getincrementaldecoder(_charset(content_type))(errors="replace")
    scanner = _TitleScanner()
    try:
        for chunk in stream:
            scanner.feed(decoder.decode(chunk))
        scanner.feed(decoder.decode(b"", final=True))
        scanner.finish()
    except _ScanFinished as finished:
        return finished.title
    except ContentDecodeError as e:
        logger.warning(f"Stopped title extraction on undecodable body: {e}")
    except Exception as e:
        logger.warning(f"Stopped title extraction on unparsable HTML: {e}", exc_info=True)

    # We were unable to locate a title.
    return ""


def get_title(headers: Mapping[str, str], body: bytes) -> str:
    """Extracts the document title from a recorded response.

    Raises:
        ContentDecodeError: If no decoder could be constructed for the declared
            Content-Encoding of the body.
    """
    content_type = headers.get("content-type", "")

    # Only bother decoding if there is HTML to parse.
    if "text/html" not in content_type:
        return ""

    stream = decode_body(headers.get("content-encoding"), body)
    return extract_title(stream, content_type)
