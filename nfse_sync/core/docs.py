import base64, binascii, gzip, re, zlib
from typing import Iterable, Optional
from nfse_sync.core.types import NsuRecord

_FIRST_TAG = re.compile(rb'<\s*([a-zA-Z_][a-zA-Z0-9_:\-\.]*)\b')

def inflate_b64(b64:str) -> bytes:
    """Decodifica base64 e descompacta. A ADN envia GZip; aceita também zlib e DEFLATE cru."""
    raw = base64.b64decode(b64, validate=True)
    if len(raw) >= 2 and raw[0] == 0x1F and raw[1] == 0x8B:
        return gzip.decompress(raw)
    try:
        return zlib.decompress(raw, 15 | 32)
    except zlib.error:
        return zlib.decompress(raw, -15)

def deflate_b64(data:bytes) -> str:
    return base64.b64encode(gzip.compress(data)).decode("ascii")

def _try_inflate(b64:Optional[str]) -> Optional[bytes]:
    if not isinstance(b64, str) or not b64:
        return None
    try:
        return inflate_b64(b64)
    except (binascii.Error, ValueError, OSError, EOFError, zlib.error):
        return None

def root_tag(xml:bytes) -> Optional[str]:
    """Nome local (sem prefixo, minúsculo) da primeira tag de abertura."""
    m = _FIRST_TAG.search(xml)
    if not m:
        return None
    return m.group(1).decode("ascii").lower().split(":")[-1]

def is_evento(b64:Optional[str]) -> bool:
    # Falha ao decodificar nunca exclui o registro: vale como documento.
    xml = _try_inflate(b64)
    if not xml:
        return False
    return root_tag(xml) == "evento"

def maior_nsu(records:Iterable[NsuRecord]) -> Optional[int]:
    nsus = [r.nsu for r in records if r.nsu > 0]
    return max(nsus) if nsus else None

def dedup_desc(records:Iterable[NsuRecord]) -> list[NsuRecord]:
    """Um registro por NSU (vence o último visto); NSU ausente/zero nunca é mesclado. Ordena por NSU desc."""
    by_nsu: dict[object, NsuRecord] = {}
    for r in records:
        key = r.nsu if r.nsu > 0 else ("obj", id(r))
        by_nsu[key] = r
    return sorted(by_nsu.values(), key=lambda r: r.nsu, reverse=True)
