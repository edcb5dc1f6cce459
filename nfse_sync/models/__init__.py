from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import String, Integer, BigInteger, DateTime, Text, ForeignKey
from datetime import datetime, timezone

Base = declarative_base()

def utcnow() -> datetime:
    """UTC sem tzinfo, como as colunas DateTime guardam."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

class Empresa(Base):
    __tablename__ = "empresas"
    id: Mapped[int] = mapped_column(primary_key=True)
    cnpj: Mapped[str] = mapped_column(String(14), unique=True, index=True)
    razao_social: Mapped[str] = mapped_column(String(200))
    ambiente: Mapped[str] = mapped_column(String(10), default="homolog")  # prod|homolog
    ativo: Mapped[int] = mapped_column(Integer, default=1)

class Certificado(Base):
    __tablename__ = "certificados"
    id: Mapped[int] = mapped_column(primary_key=True)
    empresa_id: Mapped[int] = mapped_column(ForeignKey("empresas.id"), index=True)
    tipo: Mapped[str] = mapped_column(String(2), default="A1")
    pfx_path: Mapped[str] = mapped_column(Text)                 # caminho do .pfx
    senha_cripto: Mapped[str] = mapped_column(Text)             # armazene cifrada (placeholder)

class CursorCache(Base):
    """Cursor de NSU com validade; chave no formato {ns}:listar:cursor:{ambiente}:{cnpj}."""
    __tablename__ = "nsu_cursor_cache"
    chave: Mapped[str] = mapped_column(String(120), primary_key=True)
    valor: Mapped[int] = mapped_column(BigInteger)
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
