from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    APP_ENV: str = "dev"
    APP_DEBUG: bool = True
    DB_URL: str = "sqlite:///./nfse_sync.db"

    CERTS_BASE_PATH: str = "storage/certs"

    # Ambiente padrão para empresas novas: prod|homolog
    NFSE_AMBIENTE: str = "homolog"

    # ADN: distribuição por NSU e DANFSe. SEFIN: consulta da NFS-e e registro de eventos.
    ADN_URL_PRODUCAO: str = "https://adn.nfse.gov.br"
    ADN_URL_HOMOLOG: str = "https://adn.producaorestrita.nfse.gov.br"
    SEFIN_URL_PRODUCAO: str = "https://sefin.nfse.gov.br/SefinNacional"
    SEFIN_URL_HOMOLOG: str = "https://sefin.producaorestrita.nfse.gov.br/SefinNacional"

    NFSE_TIMEOUT_SEC: int = 45
    # Opcional: bundle de certificados raiz ICP-Brasil (para substituir certifi)
    NFSE_CA_BUNDLE: str | None = None
    # Ativa logs detalhados das chamadas e do loop de sincronização
    NFSE_DEBUG: bool = False

    LISTAR_MAX_PAGINAS_INICIAL: int = 4
    LISTAR_MAX_PAGINAS_CONTINUACAO: int = 6
    LISTAR_TAMANHO_LOTE: int = 100
    LISTAR_INTERVALO_ENTRE_PAGINAS_MS: int = 250
    LISTAR_CURSOR_CACHE_DIAS: int = 30
    LISTAR_CURSOR_NAMESPACE: str = "nfse"
    RATE_LIMIT_RETRY_AFTER_SEC: int = 60

    JOB_INTERVAL_MINUTES: int = 10
    # Empresa sem NSUs pendentes fica fora do agendador por esse tempo
    JOB_IDLE_HOLD_SEC: int = 3600

    class Config:
        env_file = ".env"

settings = Settings()
