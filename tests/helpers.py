"""Test doubles and canned API payloads."""

from __future__ import annotations

import json
from typing import Callable, Optional, Union

import httpx

from skim.assistant import Reply
from skim.models import Analysis

# ---------------------------------------------------------------------------
# PDFs
# ---------------------------------------------------------------------------

def make_pdf(lines: list[str]) -> bytes:
    """A one-page PDF whose text layer is `lines`, one per line, in Helvetica."""

    def esc(s: str) -> str:
        return s.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")

    ops = ["BT", "/F1 12 Tf", "72 720 Td"]
    for line in lines:
        ops.append(f"({esc(line)}) Tj")
        ops.append("0 -16 Td")
    ops.append("ET")
    stream = "\n".join(ops).encode("latin-1")

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
        b"/Contents 4 0 R /Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, 1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"
    xref_at = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref_at)
    return bytes(out)


PAPER_LINES = [
    "Attention Is All You Need",
    "Abstract",
    "The dominant sequence transduction models are based on complex recurrent",
    "or convolutional neural networks that include an encoder and a decoder.",
    "We propose a new simple network architecture, the Transformer.",
]
PAPER_PDF = make_pdf(PAPER_LINES)
SHORT_PDF = make_pdf(["Scanned page"])


# ---------------------------------------------------------------------------
# Remote APIs
# ---------------------------------------------------------------------------

Handler = Callable[[httpx.Request], httpx.Response]


class FakeWeb:
    """
    httpx.MockTransport router keyed on host + path (query ignored).

    A route's value is either a handler or an httpx.Response factory result;
    unknown URLs get a 404.
    """

    def __init__(self):
        self.routes: dict[str, Handler] = {}
        self.requests: list[httpx.Request] = []

    def add(self, host_path: str, handler: Union[Handler, httpx.Response]) -> None:
        if isinstance(handler, httpx.Response):
            status, headers, content = handler.status_code, dict(handler.headers), handler.content
            handler = lambda request: httpx.Response(status, headers=headers, content=content)  # noqa: E731
        self.routes[host_path] = handler

    def hits(self, host_path: str) -> int:
        return sum(1 for r in self.requests if f"{r.url.host}{r.url.path}" == host_path)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(f"{request.url.host}{request.url.path}")
        if handler is None:
            return httpx.Response(404, text="not found")
        return handler(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def pdf_response(data: bytes = PAPER_PDF) -> httpx.Response:
    return httpx.Response(200, headers={"content-type": "application/pdf"}, content=data)


def json_response(payload: dict) -> httpx.Response:
    return httpx.Response(200, headers={"content-type": "application/json"}, content=json.dumps(payload).encode())


def timeout(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectTimeout("timed out", request=request)


ARXIV_ENTRY = """\
<entry>
  <id>http://arxiv.org/abs/1706.03762v7</id>
  <updated>2023-08-02T00:41:18Z</updated>
  <published>2017-06-12T17:57:34Z</published>
  <title>Attention Is All
    You Need</title>
  <summary>  The dominant sequence transduction models are based on complex recurrent or
convolutional neural networks.</summary>
  <author><name>Ashish Vaswani</name></author>
  <author><name>Noam Shazeer</name></author>
  <author><name>Niki Parmar</name></author>
  <link href="http://arxiv.org/abs/1706.03762v7" rel="alternate" type="text/html"/>
  <link title="pdf" href="http://arxiv.org/pdf/1706.03762v7" rel="related" type="application/pdf"/>
</entry>"""

ARXIV_ERROR_ENTRY = """\
<entry>
  <id>http://arxiv.org/api/errors#incorrect_id_format_for_9999.99999</id>
  <title>Error</title>
  <summary>incorrect id format for 9999.99999</summary>
</entry>"""


def arxiv_feed(*entries: str, total: Optional[int] = None) -> str:
    total = len(entries) if total is None else total
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<feed xmlns="http://www.w3.org/2005/Atom" '
        'xmlns:opensearch="http://a9.com/-/spec/opensearch/1.1/">\n'
        f"<opensearch:totalResults>{total}</opensearch:totalResults>\n"
        + "\n".join(entries)
        + "\n</feed>"
    )


def arxiv_search_entry(n: int, published: str) -> str:
    return f"""\
<entry>
  <id>http://arxiv.org/abs/2401.0000{n}v1</id>
  <published>{published}T00:00:00Z</published>
  <title>arXiv result {n}</title>
  <summary>Abstract {n}</summary>
  <author><name>Author {n}</name></author>
  <link title="pdf" href="http://arxiv.org/pdf/2401.0000{n}v1" rel="related"/>
</entry>"""


PUBMED_SUMMARY = {
    "result": {
        "uids": ["31452104"],
        "31452104": {
            "uid": "31452104",
            "title": "Deep learning for <i>cell</i> segmentation.",
            "pubdate": "2019 Aug 26",
            "authors": [{"name": "Moen E"}, {"name": "Bannon D"}],
            "articleids": [
                {"idtype": "pubmed", "value": "31452104"},
                {"idtype": "pmc", "value": "PMC7010134"},
            ],
        },
    }
}

BIORXIV_DETAILS = {
    "collection": [
        {
            "doi": "10.1101/2020.03.01.972935",
            "title": "A protein interaction map",
            "authors": "Gordon, D. E.; Jang, G. M.; Krogan, N. J.",
            "date": "2020-03-22",
            "version": "1",
            "abstract": "An outbreak.",
        },
        {
            "doi": "10.1101/2020.03.01.972935",
            "title": "A SARS-CoV-2 protein interaction map",
            "authors": "Gordon, D. E.; Jang, G. M.; Krogan, N. J.",
            "date": "2020-03-24",
            "version": "2",
            "abstract": "An outbreak of coronavirus.",
        },
    ]
}


# ---------------------------------------------------------------------------
# AI capability
# ---------------------------------------------------------------------------

GOOD_ANALYSIS = Analysis(
    summary="Introduces the Transformer.",
    rating=9,
    category="Computer Science",
    tags=["attention", "transformer", "attention"],
    key_findings=["Attention alone suffices", "Trains faster than RNNs"],
    cost_estimate=0.0123,
)


class FakeAssistant:
    """Stands in for the Groq-backed Assistant; records every call."""

    def __init__(self, analysis: Analysis = GOOD_ANALYSIS, fail: bool = False, reply: str = "It uses attention."):
        self.analysis = analysis
        self.fail = fail
        self.reply = reply
        self.analyze_calls: list[str] = []
        self.chat_calls: list[tuple[str, list]] = []
        self.answer_calls: list[tuple[str, str, str]] = []

    async def analyze(self, text: str) -> Analysis:
        self.analyze_calls.append(text)
        if self.fail:
            raise RuntimeError("model unavailable")
        return self.analysis.model_copy()

    async def chat(self, text: str, history: list) -> Reply:
        self.chat_calls.append((text, history))
        if self.fail:
            raise RuntimeError("model unavailable")
        return Reply(text=self.reply, cost_estimate=0.002)

    async def answer(self, text: str, selected_text: str, note: str) -> Reply:
        self.answer_calls.append((text, selected_text, note))
        if self.fail:
            raise RuntimeError("model unavailable")
        return Reply(text=self.reply, cost_estimate=0.001)
