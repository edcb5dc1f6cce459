import time
from typing import Optional
import certifi
import requests
from nfse_sync.core.types import Credenciais, NsuRecord, Page
from nfse_sync.logs import get_logger
from nfse_sync.settings import settings

logger = get_logger("ws")

SEM_DOCUMENTOS = "NENHUM_DOCUMENTO_LOCALIZADO"

class NfseClientError(Exception):
    def __init__(self, message:str, status_code:Optional[int]=None, body:Optional[str]=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

class RateLimited(NfseClientError):
    pass

def _resolve_verify(override: Optional[str|bool]=None):
    if override is not None:
        return override
    if settings.NFSE_CA_BUNDLE:
        return settings.NFSE_CA_BUNDLE  # usa bundle customizado (ICP-Brasil)
    return certifi.where()

def _int_or_none(v) -> Optional[int]:
    try:
        return int(v) if v not in (None, "") else None
    except (TypeError, ValueError):
        return None

def _first(d:dict, *keys):
    for k in keys:
        if k in d and d[k] not in (None, ""):
            return d[k]
    return None

def _error_detail(resp:requests.Response) -> str:
    """Extrai a lista de erros da SEFIN/ADN (Erros/erros/erro) ou o início do corpo."""
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:500]
    if not isinstance(data, dict):
        return str(data)[:500]
    erros = _first(data, "Erros", "erros", "erro", "Erro")
    if isinstance(erros, dict):
        erros = [erros]
    if isinstance(erros, list) and erros:
        parts = []
        for e in erros:
            if isinstance(e, dict):
                cod = _first(e, "Codigo", "codigo")
                desc = _first(e, "Descricao", "descricao", "Mensagem", "mensagem")
                compl = _first(e, "Complemento", "complemento")
                parts.append(" - ".join(str(p) for p in (cod, desc, compl) if p))
            else:
                parts.append(str(e))
        return "; ".join(parts)
    return resp.text[:500]

class NFSeNacionalClient:
    """Cliente mTLS para a ADN (distribuição por NSU, DANFSe) e a SEFIN Nacional (NFS-e, eventos)."""

    def __init__(self, cred:Credenciais, session:Optional[requests.Session]=None,
                 verify_ca:Optional[str|bool]=None, timeout:Optional[int]=None):
        self.cred = cred
        self.session = session or requests.Session()
        self.session.cert = cred.cert_tuple
        self.session.verify = _resolve_verify(verify_ca)
        self.timeout = timeout or settings.NFSE_TIMEOUT_SEC
        if cred.producao:
            self.adn_url = settings.ADN_URL_PRODUCAO.rstrip("/")
            self.sefin_url = settings.SEFIN_URL_PRODUCAO.rstrip("/")
        else:
            self.adn_url = settings.ADN_URL_HOMOLOG.rstrip("/")
            self.sefin_url = settings.SEFIN_URL_HOMOLOG.rstrip("/")

    def _raise_for(self, resp:requests.Response, op:str):
        detail = _error_detail(resp)
        msg = f"{op}: HTTP {resp.status_code} {detail}".strip()
        if resp.status_code == 429:
            raise RateLimited(msg, resp.status_code, resp.text)
        raise NfseClientError(msg, resp.status_code, resp.text)

    def _request(self, method:str, url:str, op:str, **kw) -> requests.Response:
        started = time.time()
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kw)
        except requests.RequestException as e:
            raise NfseClientError(f"{op}: {e}") from e
        if settings.NFSE_DEBUG:
            logger.debug(f"{op} {method} {url} HTTP={resp.status_code} t={time.time() - started:.2f}s")
        return resp

    def fetch_page(self, nsu:int, cnpj_consulta:Optional[str]=None) -> Page:
        url = f"{self.adn_url}/contribuintes/DFe/{int(nsu)}"
        params = {"lote": "true"}
        if cnpj_consulta:
            params["cnpjConsulta"] = cnpj_consulta
        resp = self._request("GET", url, "DFe", params=params, headers={"Accept": "application/json"})
        data = None
        if resp.status_code in (200, 404):
            try:
                data = resp.json()
            except ValueError:
                data = None
        if resp.status_code == 404 and isinstance(data, dict) and data.get("StatusProcessamento") == SEM_DOCUMENTOS:
            return Page(records=[], maior_nsu=_int_or_none(_first(data, "MaiorNSU", "maxNSU")))
        if resp.status_code != 200 or not isinstance(data, dict):
            self._raise_for(resp, "DFe")
        if data.get("StatusProcessamento") == "REJEICAO":
            raise NfseClientError(f"DFe: {_error_detail(resp)}", resp.status_code, resp.text)
        lote = data.get("LoteDFe") or []
        return Page(
            records=[NsuRecord.from_lote(item) for item in lote if isinstance(item, dict)],
            maior_nsu=_int_or_none(_first(data, "MaiorNSU", "maxNSU", "maiorNsu")),
            ultimo_nsu=_int_or_none(_first(data, "UltimoNSU", "ultNSU", "ultimoNsu")),
        )

    def fetch_invoice_xml(self, chave:str) -> Optional[str]:
        resp = self._request("GET", f"{self.sefin_url}/nfse/{chave}", "consultarNfse",
                             headers={"Accept": "application/json"})
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            self._raise_for(resp, "consultarNfse")
        try:
            data = resp.json()
        except ValueError:
            self._raise_for(resp, "consultarNfse")
        return _first(data, "nfseXmlGZipB64", "NfseXmlGZipB64") if isinstance(data, dict) else None

    def fetch_danfse_pdf(self, chave:str) -> bytes:
        resp = self._request("GET", f"{self.adn_url}/danfse/{chave}", "danfse",
                             headers={"Accept": "application/pdf"})
        if resp.status_code != 200 or not resp.content:
            self._raise_for(resp, "danfse")
        return resp.content

    def submit_event(self, chave:str, payload:str) -> dict:
        resp = self._request("POST", f"{self.sefin_url}/nfse/{chave}/eventos", "registrarEvento",
                             json={"pedidoRegistroEventoXmlGZipB64": payload},
                             headers={"Accept": "application/json"})
        if resp.status_code not in (200, 201):
            self._raise_for(resp, "registrarEvento")
        try:
            return resp.json()
        except ValueError:
            return {"status_code": resp.status_code, "body": resp.text[:500]}
