from apscheduler.schedulers.blocking import BlockingScheduler
from sqlalchemy import select
from nfse_sync.store.db import SessionLocal
from nfse_sync.models import Empresa
from nfse_sync.api.routes.nfse import carregar_credenciais, sync_engine
from nfse_sync.logs import get_logger
from nfse_sync.settings import settings
import time

logger = get_logger("jobs")

# Janela dinâmica: empresa sem pendências (hasMore=false) ou limitada (429) fica em espera
_next_allowed_ts: dict[int, float] = {}

sched = BlockingScheduler()

def sync_empresa(emp_id:int, cnpj:str, now:float, engine=None, load=carregar_credenciais) -> None:
    engine = engine or sync_engine
    with load(emp_id) as cred:
        res = engine.synchronize(cred)
    if not res.ok:
        logger.warning(f"empresa={cnpj} erro: {res.message}")
        if res.retry_after_seconds:
            _next_allowed_ts[emp_id] = now + res.retry_after_seconds
        return
    data = res.value
    logger.info(f"empresa={cnpj} nsu={data.ult_nsu}/{data.max_nsu} paginas={data.pages_read} docs={len(data.records)}")
    if not data.has_more:
        _next_allowed_ts[emp_id] = now + settings.JOB_IDLE_HOLD_SEC

@sched.scheduled_job("interval", minutes=settings.JOB_INTERVAL_MINUTES)
def sync_all():
    with SessionLocal() as db:
        empresas = [(e.id, e.cnpj) for (e,) in db.execute(select(Empresa).where(Empresa.ativo==1)).all()]
    for emp_id, cnpj in empresas:
        now = time.time()
        if now < _next_allowed_ts.get(emp_id, 0):
            continue
        try:
            sync_empresa(emp_id, cnpj, now)
        except Exception as e:
            logger.error(f"empresa={cnpj} erro: {e}")

if __name__ == "__main__":
    sched.start()
