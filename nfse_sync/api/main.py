from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .routes import health, empresas, nfse
app = FastAPI(title="NFS-e Sync (NSU) + eventos", version="0.1.0")

# CORS: permitir UI local (ajuste se necessário)
app.add_middleware(
	CORSMiddleware,
	allow_origins=[
		"http://localhost:8010",
		"http://127.0.0.1:8010",
	],
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)
app.include_router(health.router)
app.include_router(empresas.router, prefix="/api", tags=["Empresas"])
app.include_router(nfse.router, prefix="/api", tags=["NFS-e"])
