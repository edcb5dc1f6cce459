from dataclasses import dataclass, field
from typing import Any, Optional, Tuple

@dataclass(frozen=True)
class Credenciais:
    """Empresa autenticada: CNPJ, ambiente (prod|homolog) e par PEM (cert, key) para mTLS/assinatura."""
    cnpj: str
    ambiente: str
    cert_path: str
    key_path: str

    @property
    def cert_tuple(self) -> Tuple[str, str]:
        return (self.cert_path, self.key_path)

    @property
    def producao(self) -> bool:
        return (self.ambiente or '').lower().startswith("prod")

    @property
    def tp_amb(self) -> str:
        return "1" if self.producao else "2"

@dataclass
class NsuRecord:
    nsu: int
    documento: Optional[str]          # XML gzip + base64 (ArquivoXml)
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_lote(cls, item:dict) -> "NsuRecord":
        try:
            nsu = int(item.get("NSU") or item.get("nsu") or 0)
        except (TypeError, ValueError):
            nsu = 0
        doc = item.get("ArquivoXml") or item.get("dfeXmlGZipB64")
        return cls(nsu=nsu, documento=doc, raw=dict(item))

@dataclass
class Page:
    records: list[NsuRecord]
    maior_nsu: Optional[int] = None   # high-water global informado pela ADN
    ultimo_nsu: Optional[int] = None  # último NSU do lote

@dataclass
class SyncResult:
    cnpj_consulta: str
    cursor_source: str                # request|cache
    cursor_used: int
    ult_nsu: int
    max_nsu: int
    next_nsu: int
    has_more: bool
    pages_read: int
    jumped_to_end: bool
    ignored_event_docs: int
    records: list[NsuRecord]

    def to_dict(self) -> dict:
        return {
            "cnpjConsulta": self.cnpj_consulta,
            "cursorSource": self.cursor_source,
            "cursorUsed": self.cursor_used,
            "lastProcessedNsu": self.ult_nsu,
            "maxKnownNsu": self.max_nsu,
            "nextNsu": self.next_nsu,
            "hasMore": self.has_more,
            "pagesRead": self.pages_read,
            "jumpedToEnd": self.jumped_to_end,
            "ignoredEventDocs": self.ignored_event_docs,
            "records": [r.raw for r in self.records],
        }
