"""
Sincronização incremental por NSU contra a ADN (Distribuição de DF-e da NFS-e).

Fluxo de `NsuSyncEngine.synchronize`:

- resolve o cursor inicial (informado > cache > zero);
- lê até 4 páginas em partida a frio ou 6 em continuação;
- na primeira página de uma partida a frio, se a ADN informar um maior NSU
  acima do processado, descarta o lote e salta para perto do fim
  (maior NSU - (lote - 1)), cobrindo só a cauda recente;
- remove documentos de evento (raiz <evento>), deduplica por NSU e ordena
  por NSU decrescente;
- grava no cache "último processado + 1" sempre que o processado avança.

Falhas nunca sobem: voltam como `Err`, com o cursor já gravado preservado.
"""
import time
from datetime import timedelta
from typing import Callable, Optional
from nfse_sync.core.docs import dedup_desc, is_evento, maior_nsu
from nfse_sync.core.errors import is_rate_limited
from nfse_sync.core.result import Err, ErrorKind, Ok, Result
from nfse_sync.core.types import Credenciais, NsuRecord, SyncResult
from nfse_sync.logs import get_logger
from nfse_sync.settings import settings
from nfse_sync.store.cursor_store import CursorStore, cursor_key

logger = get_logger("sync")

RATE_LIMIT_MSG = ("API NFS-e retornou 429 (limite de requisicoes). Aguarde {sec} segundos e tente "
                  "novamente com o ultimo_nsu retornado anteriormente.")

def _digits(s:str) -> str:
    return ''.join(ch for ch in (s or '') if ch.isdigit())

def jump_target(maior:int, tamanho_lote:int) -> int:
    return max(0, int(maior) - (tamanho_lote - 1))

class NsuSyncEngine:
    def __init__(self, client_factory:Callable, cursor_store:CursorStore,
                 sleep:Callable[[float], None]=time.sleep,
                 max_paginas_inicial:int|None=None, max_paginas_continuacao:int|None=None,
                 tamanho_lote:int|None=None, intervalo_ms:int|None=None,
                 cursor_ttl:timedelta|None=None, namespace:str|None=None):
        self.client_factory = client_factory
        self.cursor_store = cursor_store
        self.sleep = sleep
        self.max_paginas_inicial = max_paginas_inicial or settings.LISTAR_MAX_PAGINAS_INICIAL
        self.max_paginas_continuacao = max_paginas_continuacao or settings.LISTAR_MAX_PAGINAS_CONTINUACAO
        self.tamanho_lote = tamanho_lote or settings.LISTAR_TAMANHO_LOTE
        self.intervalo_ms = settings.LISTAR_INTERVALO_ENTRE_PAGINAS_MS if intervalo_ms is None else intervalo_ms
        self.cursor_ttl = cursor_ttl or timedelta(days=settings.LISTAR_CURSOR_CACHE_DIAS)
        self.namespace = namespace

    def key_for(self, cred:Credenciais) -> str:
        return cursor_key(cred.ambiente, cred.cnpj, self.namespace)

    def synchronize(self, cred:Credenciais, ultimo_nsu:int=0, reset_cursor:bool=False) -> Result:
        try:
            return Ok(self._run(cred, ultimo_nsu, reset_cursor))
        except Exception as e:
            if is_rate_limited(e):
                sec = settings.RATE_LIMIT_RETRY_AFTER_SEC
                logger.warning(f"listar cnpj={cred.cnpj} limitado pela API (429): {e}")
                return Err(ErrorKind.RATE_LIMITED, RATE_LIMIT_MSG.format(sec=sec), retry_after_seconds=sec)
            logger.error(f"listar cnpj={cred.cnpj} falhou: {e}")
            return Err(ErrorKind.TRANSPORT, str(e))

    def _resolve_cursor(self, key:str, ultimo_nsu:int, reset_cursor:bool) -> tuple[int, str, int]:
        if reset_cursor:
            self.cursor_store.forget(key)
        informado = max(0, int(ultimo_nsu or 0))
        em_cache = max(0, int(self.cursor_store.get(key) or 0))
        if informado > 0:
            return informado, "request", em_cache
        return em_cache, ("cache" if em_cache > 0 else "request"), em_cache

    def _run(self, cred:Credenciais, ultimo_nsu:int, reset_cursor:bool) -> SyncResult:
        key = self.key_for(cred)
        cursor, origem, gravado = self._resolve_cursor(key, ultimo_nsu, reset_cursor)
        cnpj_consulta = _digits(cred.cnpj)
        client = self.client_factory(cred)

        paginas = 0
        processado = cursor
        maior: Optional[int] = None
        lista: list[NsuRecord] = []
        eventos_ignorados = 0
        partida_fria = cursor == 0
        max_paginas = self.max_paginas_inicial if partida_fria else self.max_paginas_continuacao
        pulou = False
        logger.debug(f"listar cnpj={cnpj_consulta} cursor={cursor} origem={origem} max_paginas={max_paginas}")

        while True:
            paginas += 1
            page = client.fetch_page(cursor, cnpj_consulta or None)
            lote = page.records or []
            sem_eventos = [r for r in lote if not is_evento(r.documento)]
            eventos_ignorados += len(lote) - len(sem_eventos)
            lista.extend(sem_eventos)

            if page.maior_nsu and int(page.maior_nsu) > 0:
                maior = max(maior or 0, int(page.maior_nsu))

            ult_lote = page.ultimo_nsu or maior_nsu(lote)
            if ult_lote:
                processado = max(processado, int(ult_lote))
                if processado + 1 > gravado:
                    gravado = processado + 1
                    self.cursor_store.put(key, gravado, self.cursor_ttl)
            logger.debug(f"pagina={paginas} cursor={cursor} docs={len(lote)} ultNSU={processado} maxNSU={maior}")

            if partida_fria and paginas == 1 and maior and maior > processado:
                cursor = jump_target(maior, self.tamanho_lote)
                lista = []
                pulou = True
                logger.debug(f"salto para o fim: maxNSU={maior} novo cursor={cursor}")
                if paginas >= max_paginas:
                    break
                continue

            if not lote:
                break
            if maior and processado >= maior:
                break
            proximo = processado + 1
            if proximo <= cursor:
                break
            cursor = proximo
            if paginas >= max_paginas:
                break
            self.sleep(self.intervalo_ms / 1000.0)

        lista = dedup_desc(lista)
        atingiu_limite = paginas >= max_paginas
        existe_mais = bool(maior) and processado < maior
        result = SyncResult(
            cnpj_consulta=cnpj_consulta,
            cursor_source=origem,
            cursor_used=cursor,
            ult_nsu=processado,
            max_nsu=maior if maior is not None else processado,
            next_nsu=processado + 1,
            has_more=atingiu_limite or existe_mais,
            pages_read=paginas,
            jumped_to_end=pulou,
            ignored_event_docs=eventos_ignorados,
            records=lista,
        )
        logger.info(f"listar cnpj={cnpj_consulta} paginas={paginas} ultNSU={processado} maxNSU={result.max_nsu} "
                    f"docs={len(lista)} eventos_ignorados={eventos_ignorados} hasMore={result.has_more}")
        return result
