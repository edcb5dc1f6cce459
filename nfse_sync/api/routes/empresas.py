from fastapi import APIRouter, UploadFile, Form, HTTPException
from sqlalchemy import insert, select
from nfse_sync.store.db import SessionLocal
from nfse_sync.models import Empresa, Certificado
from nfse_sync.cert.pfx_utils import pfx_extract_cnpj_cpf
from pathlib import Path
from nfse_sync.settings import settings

router = APIRouter()

AMBIENTES = ("prod", "homolog")

@router.post("/empresas")
async def create_empresa(cnpj:str=Form(...), razao_social:str=Form(""), ambiente:str=Form(settings.NFSE_AMBIENTE)):
    cnpj_digits = "".join(filter(str.isdigit, cnpj))
    if len(cnpj_digits) != 14: raise HTTPException(422, "CNPJ deve conter 14 digitos")
    ambiente = (ambiente or "").lower()
    if ambiente not in AMBIENTES: raise HTTPException(422, "Ambiente deve ser prod ou homolog")
    with SessionLocal() as db:
        exists = db.execute(select(Empresa).where(Empresa.cnpj==cnpj_digits)).scalar_one_or_none()
        if exists: raise HTTPException(409, "CNPJ já cadastrado")
        db.execute(insert(Empresa).values(cnpj=cnpj_digits, razao_social=razao_social, ambiente=ambiente))
        db.commit()
        emp = db.execute(select(Empresa).where(Empresa.cnpj==cnpj_digits)).scalar_one()
        return {"id":emp.id, "cnpj":cnpj_digits, "ambiente":emp.ambiente}

@router.post("/empresas/{empresa_id}/cert")
async def upload_cert(empresa_id:int, certificado_pfx:UploadFile, senha_certificado:str=Form(...)):
    # OBS: cifre a senha em produção (Vault/KMS). Aqui guardamos caminho do PFX e senha em claro.
    with SessionLocal() as db:
        if db.get(Empresa, empresa_id) is None: raise HTTPException(404, "Empresa não encontrada")
    pfx = await certificado_pfx.read()
    try:
        tipo, doc = pfx_extract_cnpj_cpf(pfx, senha_certificado)
    except ValueError:
        raise HTTPException(422, "Nao foi possivel ler o certificado PFX. Verifique a senha ou validade do arquivo.")
    base = Path(settings.CERTS_BASE_PATH); base.mkdir(parents=True, exist_ok=True)
    pfx_path = base / f"{empresa_id}.pfx"
    pfx_path.write_bytes(pfx)
    with SessionLocal() as db:
        # uma linha por empresa; novo upload substitui o certificado anterior
        cert = db.execute(select(Certificado).where(Certificado.empresa_id==empresa_id)
                          .order_by(Certificado.id.desc()).limit(1)).scalars().first()
        if cert is None:
            db.execute(insert(Certificado).values(empresa_id=empresa_id, pfx_path=str(pfx_path), senha_cripto=senha_certificado))
        else:
            cert.pfx_path = str(pfx_path)
            cert.senha_cripto = senha_certificado
        db.commit()
    return {"ok":True, "tipo":tipo, "documento":doc}
