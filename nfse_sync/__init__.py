"""Sincronização por NSU e registro de eventos da NFS-e Nacional (ADN/SEFIN)."""
__version__ = "0.1.0"
