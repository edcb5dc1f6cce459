from typing import Callable
from nfse_sync.core.docs import inflate_b64
from nfse_sync.core.errors import is_rate_limited
from nfse_sync.core.result import Err, ErrorKind, Ok, Result
from nfse_sync.core.types import Credenciais
from nfse_sync.logs import get_logger

logger = get_logger("documentos")

def _digits(s:str) -> str:
    return ''.join(ch for ch in (s or '') if ch.isdigit())

def _err(e:Exception) -> Err:
    kind = ErrorKind.RATE_LIMITED if is_rate_limited(e) else ErrorKind.TRANSPORT
    return Err(kind, str(e))

def obter_xml(client_factory:Callable, cred:Credenciais, chave:str) -> Result:
    """XML da NFS-e já descompactado; sem payload na SEFIN -> Err(not_found)."""
    chave = _digits(chave)
    try:
        b64 = client_factory(cred).fetch_invoice_xml(chave)
        if not b64:
            return Err(ErrorKind.NOT_FOUND, f"NFS-e nao localizada: {chave}")
        xml = inflate_b64(b64)
    except Exception as e:
        logger.error(f"consulta XML chave={chave} falhou: {e}")
        return _err(e)
    try:
        return Ok(xml.decode("utf-8"))
    except UnicodeDecodeError:
        return Ok(xml.decode("latin-1", errors="ignore"))

def obter_pdf(client_factory:Callable, cred:Credenciais, chave:str) -> Result:
    chave = _digits(chave)
    try:
        return Ok(client_factory(cred).fetch_danfse_pdf(chave))
    except Exception as e:
        logger.error(f"DANFSe chave={chave} falhou: {e}")
        return _err(e)
