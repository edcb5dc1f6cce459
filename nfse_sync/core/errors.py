"""
Erros de entrada e classificação das falhas devolvidas pela API NFS-e.

A classificação é heurística: usa o status HTTP quando o cliente o expõe
(`status_code`) e, na falta dele, procura marcadores na mensagem. Não há
garantia de que a SEFIN mantenha esses textos.
"""

WORDING_MARKERS = ("xDesc", "Enumeration constraint failed")

class ValidacaoError(ValueError):
    """Entrada inválida; detectada antes de qualquer assinatura ou chamada remota."""

def _status_code(exc:BaseException) -> int | None:
    code = getattr(exc, "status_code", None)
    if code is None:
        resp = getattr(exc, "response", None)
        code = getattr(resp, "status_code", None)
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None

def is_rate_limited(exc:BaseException) -> bool:
    if _status_code(exc) == 429:
        return True
    return "429" in str(exc)

def is_wording_rejection(exc:BaseException) -> bool:
    """SEFIN recusou o texto do xDesc (violação de enumeração no schema)."""
    msg = str(exc)
    body = getattr(exc, "body", None)
    if body:
        msg = f"{msg} {body}"
    return all(m in msg for m in WORDING_MARKERS)
