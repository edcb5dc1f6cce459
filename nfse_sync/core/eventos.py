"""
Registro de eventos da NFS-e (cancelamento e manifestação do tomador) na SEFIN Nacional.

Cada código normalizado tem uma lista ordenada de variantes do detalhe do
evento (`VARIANTES`). A SEFIN já aceitou redações diferentes do xDesc ao longo
do tempo, então as variantes são enviadas em ordem: se a rejeição for de
enumeração no xDesc, tenta-se a próxima; qualquer outra falha encerra.
"""
from datetime import datetime, timedelta, timezone
from typing import Callable
from xml.sax.saxutils import escape
from nfse_sync.core.docs import deflate_b64
from nfse_sync.core.errors import ValidacaoError, is_rate_limited, is_wording_rejection
from nfse_sync.core.result import Err, ErrorKind, Ok, Result
from nfse_sync.core.types import Credenciais
from nfse_sync.logs import get_logger

logger = get_logger("eventos")

NS_NFSE = "http://www.sped.fazenda.gov.br/nfse"
VERSAO_EVENTO = "1.01"
VER_APLIC = "1.0.0"
TAMANHO_CHAVE = 50
TAMANHO_CNPJ = 14
MIN_JUSTIFICATIVA = 15

CANCELAMENTO = "101101"
CONFIRMACAO_TOMADOR = "203202"
REJEICAO_TOMADOR = "203206"

# Códigos legados da tela de manifestação
ALIASES = {
    "1": CANCELAMENTO,
    "2": CANCELAMENTO,
    "105101": CONFIRMACAO_TOMADOR,
    "105102": CONFIRMACAO_TOMADOR,
    "105103": REJEICAO_TOMADOR,
    "105104": REJEICAO_TOMADOR,
}

MOTIVOS_CANCELAMENTO = ("1", "2", "9")
JUST_CANCELAMENTO_PADRAO = "Cancelamento solicitado via API"
JUST_REJEICAO_PADRAO = "Manifestacao de rejeicao registrada via API"
# 105103: não ocorrência do fato gerador; 105104: outros (desconhecimento)
MOTIVO_REJEICAO_POR_LEGADO = {"105103": "3", "105104": "9"}

VARIANTES: dict[str, tuple[str, ...]] = {
    CANCELAMENTO: (
        "<e101101><xDesc>Cancelamento de NFS-e</xDesc><cMotivo>{cMotivo}</cMotivo><xMotivo>{xMotivo}</xMotivo></e101101>",
    ),
    CONFIRMACAO_TOMADOR: (
        "<e203202><xDesc>Manifesta&#xE7;&#xE3;o de NFS-e - Confirma&#xE7;&#xE3;o do Tomador</xDesc></e203202>",
        "<e203202><xDesc>Confirma&#xE7;&#xE3;o do Tomador</xDesc></e203202>",
        "<e203202><xDesc>Manifestacao de NFS-e - Confirmacao do Tomador</xDesc></e203202>",
        "<e203202><xDesc>Confirmacao do Tomador</xDesc></e203202>",
    ),
    REJEICAO_TOMADOR: (
        "<e203206><xDesc>Manifesta&#xE7;&#xE3;o de NFS-e - Rejei&#xE7;&#xE3;o do Tomador</xDesc>"
        "<infRej><cMotivo>{cMotivo}</cMotivo><xMotivo>{xMotivo}</xMotivo></infRej></e203206>",
        "<e203206><xDesc>Rejei&#xE7;&#xE3;o do Tomador</xDesc>"
        "<infRej><cMotivo>{cMotivo}</cMotivo><xMotivo>{xMotivo}</xMotivo></infRej></e203206>",
        "<e203206><xDesc>Manifestacao de NFS-e - Rejeicao do Tomador</xDesc>"
        "<infRej><cMotivo>{cMotivo}</cMotivo><xMotivo>{xMotivo}</xMotivo></infRej></e203206>",
        "<e203206><xDesc>Rejeicao do Tomador</xDesc>"
        "<infRej><cMotivo>{cMotivo}</cMotivo><xMotivo>{xMotivo}</xMotivo></infRej></e203206>",
    ),
}

PEDIDO_TEMPLATE = (
    '<pedRegEvento versao="{versao}" xmlns="{ns}">\n'
    '<infPedReg Id="{id}">\n'
    '<tpAmb>{tpAmb}</tpAmb>\n'
    '<verAplic>{verAplic}</verAplic>\n'
    '<dhEvento>{dhEvento}</dhEvento>\n'
    '<CNPJAutor>{cnpj}</CNPJAutor>\n'
    '<chNFSe>{chave}</chNFSe>\n'
    '{detalhe}\n'
    '</infPedReg>\n'
    '</pedRegEvento>'
)

def _digits(s) -> str:
    return ''.join(ch for ch in str(s or '') if ch.isdigit())

def _escape(text:str) -> str:
    return escape(text, {'"': "&quot;", "'": "&apos;"})

def normalizar_codigo(codigo:str) -> str:
    return ALIASES.get(codigo, codigo)

def normalizar_chave(chave:str) -> str:
    ch = _digits(chave)
    if len(ch) != TAMANHO_CHAVE:
        raise ValidacaoError("Chave NFSe invalida para manifestacao.")
    return ch

def normalizar_cnpj_autor(cnpj:str) -> str:
    doc = _digits(cnpj)
    if len(doc) != TAMANHO_CNPJ:
        raise ValidacaoError("CNPJ do autor invalido para manifestacao.")
    return doc

def montar_variantes(codigo_original:str, codigo:str, motivo:str) -> list[str]:
    """Detalhes do evento, em ordem de tentativa. Código não suportado é erro de entrada."""
    motivo = (motivo or '').strip()
    if codigo == CANCELAMENTO:
        c_motivo = motivo if motivo in MOTIVOS_CANCELAMENTO else "1"
        just = motivo
        if not just or just in MOTIVOS_CANCELAMENTO:
            just = JUST_CANCELAMENTO_PADRAO
        just = just.ljust(MIN_JUSTIFICATIVA, ".")
        return [v.format(cMotivo=c_motivo, xMotivo=_escape(just)) for v in VARIANTES[codigo]]

    if codigo == CONFIRMACAO_TOMADOR:
        return list(VARIANTES[codigo])

    if codigo == REJEICAO_TOMADOR:
        if codigo_original in MOTIVO_REJEICAO_POR_LEGADO and not motivo:
            raise ValidacaoError("Justificativa obrigatoria para este evento.")
        c_motivo = MOTIVO_REJEICAO_POR_LEGADO.get(codigo_original, "9")
        just = motivo or JUST_REJEICAO_PADRAO
        if len(just) < MIN_JUSTIFICATIVA:
            raise ValidacaoError("Justificativa deve conter no minimo 15 caracteres.")
        return [v.format(cMotivo=c_motivo, xMotivo=_escape(just)) for v in VARIANTES[codigo]]

    raise ValidacaoError(f"Codigo de evento nao suportado: {codigo_original}")

def montar_pedido(chave:str, cnpj:str, codigo:str, detalhe:str, tp_amb:str, dh_evento:str) -> str:
    """pedRegEvento sem quebras de linha/tabs (a canonicalização da SEFIN é sensível a espaços)."""
    xml = PEDIDO_TEMPLATE.format(
        versao=VERSAO_EVENTO, ns=NS_NFSE, id=f"PRE{chave}{codigo}", tpAmb=tp_amb,
        verAplic=VER_APLIC, dhEvento=dh_evento, cnpj=cnpj, chave=chave, detalhe=detalhe,
    )
    for ch in ("\n", "\r", "\t"):
        xml = xml.replace(ch, "")
    return xml

def _agora_brasilia() -> str:
    return datetime.now(timezone(timedelta(hours=-3))).isoformat(timespec="seconds")

class EventPayloadBuilder:
    def __init__(self, client_factory:Callable, signer_factory:Callable,
                 clock:Callable[[], str]=_agora_brasilia):
        self.client_factory = client_factory
        self.signer_factory = signer_factory
        self.clock = clock

    def build_and_submit(self, cred:Credenciais, chave:str, codigo_evento:str, motivo:str='') -> Result:
        codigo_original = _digits(codigo_evento)
        codigo = normalizar_codigo(codigo_original)
        try:
            chave = normalizar_chave(chave)
            cnpj = normalizar_cnpj_autor(cred.cnpj)
            detalhes = montar_variantes(codigo_original, codigo, motivo)
        except ValidacaoError as e:
            return Err(ErrorKind.VALIDATION, str(e))

        try:
            signer = self.signer_factory(cred)
            client = self.client_factory(cred)
            return Ok(self._submit(client, signer, cred, chave, cnpj, codigo, detalhes))
        except Exception as e:
            kind = ErrorKind.RATE_LIMITED if is_rate_limited(e) else (
                ErrorKind.WORDING_REJECTED if is_wording_rejection(e) else ErrorKind.TRANSPORT)
            logger.error(f"evento {codigo} chave={chave} falhou: {e}")
            return Err(kind, str(e))

    def _submit(self, client, signer, cred:Credenciais, chave:str, cnpj:str, codigo:str, detalhes:list[str]):
        total = len(detalhes)
        for i, detalhe in enumerate(detalhes):
            pedido = montar_pedido(chave, cnpj, codigo, detalhe, cred.tp_amb, self.clock())
            signed = signer.sign(pedido, "infPedReg")
            payload = deflate_b64(signed.encode("utf-8") if isinstance(signed, str) else signed)
            try:
                ack = client.submit_event(chave, payload)
                logger.info(f"evento {codigo} chave={chave} aceito na variante {i + 1}/{total}")
                return ack
            except Exception as e:
                if i + 1 >= total or not is_wording_rejection(e):
                    raise
                logger.warning(f"evento {codigo} variante {i + 1}/{total} recusada (xDesc); tentando a proxima")
        # lista de variantes nunca é vazia para um código suportado
        raise RuntimeError("Falha ao registrar evento de manifestacao.")

    # cancelamento usa o mesmo pipeline
    cancelar = build_and_submit
