"""
Armazenamento do cursor de NSU por (ambiente, CNPJ), com validade.

O valor guardado é sempre "retomar daqui": um após o último NSU confirmado.
Leitura e escrita não são atômicas entre si; chamadas concorrentes para a
mesma chave precisam ser serializadas pelo chamador.
"""
from datetime import datetime, timedelta
from typing import Callable, Protocol
from sqlalchemy import select, delete
from sqlalchemy.orm import Session
from nfse_sync.models import CursorCache, utcnow
from nfse_sync.settings import settings

def _digits(s:str) -> str:
    return ''.join(ch for ch in (s or '') if ch.isdigit())

def cursor_key(ambiente:str, cnpj:str, namespace:str|None=None) -> str:
    ns = namespace or settings.LISTAR_CURSOR_NAMESPACE
    return f"{ns}:listar:cursor:{ambiente or 'prod'}:{_digits(cnpj)}"

class CursorStore(Protocol):
    def get(self, key:str) -> int: ...
    def put(self, key:str, value:int, ttl:timedelta) -> None: ...
    def forget(self, key:str) -> None: ...

class MemoryCursorStore:
    """Cursor em memória do processo. Útil para testes e execuções avulsas."""

    def __init__(self, clock:Callable[[], datetime]=utcnow):
        self._clock = clock
        self._items: dict[str, tuple[int, datetime]] = {}

    def get(self, key:str) -> int:
        item = self._items.get(key)
        if item is None:
            return 0
        value, expires_at = item
        if expires_at <= self._clock():
            del self._items[key]
            return 0
        return value

    def put(self, key:str, value:int, ttl:timedelta) -> None:
        self._items[key] = (int(value), self._clock() + ttl)

    def forget(self, key:str) -> None:
        self._items.pop(key, None)

class SqlCursorStore:
    """Cursor persistido na tabela nsu_cursor_cache; linhas expiradas contam como ausentes."""

    def __init__(self, session_factory:Callable[[], Session], clock:Callable[[], datetime]=utcnow):
        self._session_factory = session_factory
        self._clock = clock

    def get(self, key:str) -> int:
        with self._session_factory() as db:
            row = db.execute(select(CursorCache).where(CursorCache.chave==key)).scalar_one_or_none()
            if row is None or row.expires_at <= self._clock():
                return 0
            return int(row.valor)

    def put(self, key:str, value:int, ttl:timedelta) -> None:
        now = self._clock()
        with self._session_factory() as db:
            row = db.get(CursorCache, key)
            if row is None:
                db.add(CursorCache(chave=key, valor=int(value), expires_at=now + ttl, updated_at=now))
            else:
                row.valor = int(value)
                row.expires_at = now + ttl
                row.updated_at = now
            db.commit()

    def forget(self, key:str) -> None:
        with self._session_factory() as db:
            db.execute(delete(CursorCache).where(CursorCache.chave==key))
            db.commit()
