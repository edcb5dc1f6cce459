from contextlib import contextmanager
from typing import Iterator
from fastapi import APIRouter, Form, HTTPException, Query
from fastapi.responses import JSONResponse, Response
from sqlalchemy import select
from nfse_sync.store.db import SessionLocal
from nfse_sync.store.cursor_store import SqlCursorStore
from nfse_sync.models import Empresa, Certificado
from nfse_sync.cert.pfx_utils import pem_tempfiles, pfx_extract_cnpj_cpf
from nfse_sync.core.documentos import obter_pdf, obter_xml
from nfse_sync.core.eventos import EventPayloadBuilder
from nfse_sync.core.nsu_sync import NsuSyncEngine
from nfse_sync.core.result import Err, ErrorKind
from nfse_sync.core.types import Credenciais
from nfse_sync.ws.nfse_client import NFSeNacionalClient
from nfse_sync.ws.signer import XmlSigningService

router = APIRouter()

cursor_store = SqlCursorStore(SessionLocal)
sync_engine = NsuSyncEngine(NFSeNacionalClient, cursor_store)
event_builder = EventPayloadBuilder(NFSeNacionalClient, XmlSigningService.from_credenciais)
client_factory = NFSeNacionalClient

_STATUS = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.NOT_FOUND: 404,
}

def _error_response(err:Err) -> JSONResponse:
    headers = {}
    if err.retry_after_seconds is not None:
        headers["Retry-After"] = str(err.retry_after_seconds)
    return JSONResponse(status_code=_STATUS.get(err.kind, 502), content=err.to_dict(), headers=headers)

PFX_ILEGIVEL = "Nao foi possivel ler o certificado PFX. Verifique a senha ou validade do arquivo."

@contextmanager
def carregar_credenciais(empresa_id:int) -> Iterator[Credenciais]:
    """Credenciais da empresa com PEM temporários; valida CNPJ-base do certificado (H04)."""
    with SessionLocal() as db:
        emp = db.execute(select(Empresa).where(Empresa.id==empresa_id)).scalar_one_or_none()
        # certificado mais recente vale (renovação do A1)
        cert = db.execute(select(Certificado).where(Certificado.empresa_id==empresa_id)
                          .order_by(Certificado.id.desc()).limit(1)).scalars().first()
        if not emp: raise HTTPException(404, "Empresa não encontrada")
        if not cert: raise HTTPException(400, "Certificado não cadastrado")
        cnpj, ambiente = emp.cnpj, emp.ambiente
        pfx_path, senha = cert.pfx_path, cert.senha_cripto
    try:
        with open(pfx_path, "rb") as f:
            pfx = f.read()
        tipo, doc = pfx_extract_cnpj_cpf(pfx, senha)
    except (OSError, ValueError):
        raise HTTPException(422, PFX_ILEGIVEL)
    if tipo == "CPF":
        raise HTTPException(422, "Certificado PF não suportado")
    if tipo == "CNPJ" and (cnpj or '')[:8] != (doc or '')[:8]:
        raise HTTPException(422, "CNPJ consultado difere do CNPJ-base do certificado (H04)")
    with pem_tempfiles(pfx, senha) as (cert_path, key_path):
        yield Credenciais(cnpj=cnpj, ambiente=ambiente, cert_path=cert_path, key_path=key_path)

@router.post("/nfse/listar")
def listar(empresa_id:int=Query(...), ultimo_nsu:int=Query(0, ge=0), reset_cursor:bool=Query(False)):
    """Sincroniza por NSU a partir do cursor informado, do cache ou do zero."""
    with carregar_credenciais(empresa_id) as cred:
        res = sync_engine.synchronize(cred, ultimo_nsu, reset_cursor)
    if not res.ok:
        return _error_response(res)
    return res.value.to_dict()

@router.get("/nfse/cursor")
def get_cursor(empresa_id:int=Query(...)):
    with SessionLocal() as db:
        emp = db.execute(select(Empresa).where(Empresa.id==empresa_id)).scalar_one_or_none()
        if not emp: raise HTTPException(404, "Empresa não encontrada")
        cred = Credenciais(cnpj=emp.cnpj, ambiente=emp.ambiente, cert_path="", key_path="")
    key = sync_engine.key_for(cred)
    return {"empresa_id": empresa_id, "chave": key, "nextNsu": cursor_store.get(key)}

@router.post("/nfse/xml/{chave}")
def xml(chave:str, empresa_id:int=Query(...)):
    with carregar_credenciais(empresa_id) as cred:
        res = obter_xml(client_factory, cred, chave)
    if not res.ok:
        return _error_response(res)
    return Response(content=res.value, media_type="application/xml")

@router.post("/nfse/download/{chave}")
def download(chave:str, empresa_id:int=Query(...)):
    with carregar_credenciais(empresa_id) as cred:
        res = obter_pdf(client_factory, cred, chave)
    if not res.ok:
        return _error_response(res)
    return Response(content=res.value, media_type="application/pdf",
                    headers={"Content-Disposition": f'attachment; filename="DANFSe-{chave}.pdf"'})

@router.post("/nfse/manifestar/{chave}")
def manifestar(chave:str, empresa_id:int=Query(...), codigo:str=Form(...), motivo:str=Form("")):
    """Cancelamento (101101, 1, 2) ou manifestação do tomador (203202/203206 e legados 10510x)."""
    with carregar_credenciais(empresa_id) as cred:
        res = event_builder.build_and_submit(cred, chave, codigo, motivo)
    if not res.ok:
        return _error_response(res)
    return {"ack": res.value}

@router.post("/nfse/cancelar/{chave}")
def cancelar(chave:str, empresa_id:int=Query(...), codigo:str=Form("101101"), motivo:str=Form("")):
    return manifestar(chave, empresa_id, codigo, motivo)

@router.post("/nfse/contas/{chave}")
def contas(chave:str, empresa_id:int=Query(...)):
    return xml(chave, empresa_id)
