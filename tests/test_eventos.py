import base64
import gzip

import pytest

from conftest import CHAVE
from nfse_sync.core.errors import ValidacaoError, is_rate_limited, is_wording_rejection
from nfse_sync.core.eventos import (
    VARIANTES,
    EventPayloadBuilder,
    montar_pedido,
    montar_variantes,
    normalizar_codigo,
)
from nfse_sync.core.result import ErrorKind
from nfse_sync.core.types import Credenciais
from nfse_sync.ws.nfse_client import NfseClientError

WORDING_ERROR = ("registrarEvento: HTTP 400 E1235 - Falha no esquema XML - "
                 "Element 'xDesc': [facet 'enumeration'] Enumeration constraint failed.")


class FakeSigner:
    def __init__(self):
        self.signed = []

    def sign(self, xml, tag="infPedReg"):
        self.signed.append((xml, tag))
        return xml.replace("</pedRegEvento>", "<Signature/></pedRegEvento>")


class FakeEventos:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.submitted = []

    def submit_event(self, chave, payload):
        self.submitted.append((chave, payload))
        out = self.outcomes.pop(0)
        if isinstance(out, Exception):
            raise out
        return out


def make_builder(outcomes):
    client = FakeEventos(outcomes)
    signer = FakeSigner()
    builder = EventPayloadBuilder(lambda cred: client, lambda cred: signer,
                                  clock=lambda: "2026-10-18T10:00:00-03:00")
    return builder, client, signer


def cred(cnpj="12.345.678/0001-95"):
    return Credenciais(cnpj=cnpj, ambiente="prod", cert_path="c", key_path="k")


def unpack(payload):
    return gzip.decompress(base64.b64decode(payload)).decode("utf-8")


@pytest.mark.parametrize("codigo,expected", [
    ("1", "101101"), ("2", "101101"), ("101101", "101101"),
    ("105101", "203202"), ("105102", "203202"),
    ("105103", "203206"), ("105104", "203206"),
    ("203206", "203206"), ("999999", "999999"),
])
def test_alias_normalization(codigo, expected):
    assert normalizar_codigo(codigo) == expected


def test_variant_table_is_never_empty():
    assert all(len(v) >= 1 for v in VARIANTES.values())
    assert len(VARIANTES["101101"]) == 1
    assert len(VARIANTES["203202"]) == 4
    assert len(VARIANTES["203206"]) == 4


def test_cancellation_defaults_reason_code_and_text():
    [det] = montar_variantes("1", "101101", "1")
    assert "<cMotivo>1</cMotivo>" in det
    assert "<xMotivo>Cancelamento solicitado via API</xMotivo>" in det


def test_cancellation_keeps_supplied_code_and_pads_short_text():
    [det] = montar_variantes("101101", "101101", "9")
    assert "<cMotivo>9</cMotivo>" in det
    [det] = montar_variantes("101101", "101101", "Erro & dup")
    assert "<cMotivo>1</cMotivo>" in det
    assert "<xMotivo>Erro &amp; dup.....</xMotivo>" in det


def test_rejection_escapes_and_derives_reason_code():
    dets = montar_variantes("105103", "203206", 'Servico "nao" prestado <x>')
    assert len(dets) == 4
    assert all("<cMotivo>3</cMotivo>" in d for d in dets)
    assert "Servico &quot;nao&quot; prestado &lt;x&gt;" in dets[0]
    dets = montar_variantes("105104", "203206", "Desconheco esta operacao")
    assert "<cMotivo>9</cMotivo>" in dets[0]


def test_rejection_direct_code_uses_default_justification():
    dets = montar_variantes("203206", "203206", "")
    assert "<cMotivo>9</cMotivo>" in dets[0]
    assert "Manifestacao de rejeicao registrada via API" in dets[0]


@pytest.mark.parametrize("original,motivo", [("105103", ""), ("105104", "   "), ("203206", "curto")])
def test_rejection_justification_rules(original, motivo):
    with pytest.raises(ValidacaoError):
        montar_variantes(original, "203206", motivo)


def test_unsupported_code_is_validation_error():
    with pytest.raises(ValidacaoError, match="nao suportado"):
        montar_variantes("777", "777", "")


def test_envelope_identifier_and_whitespace():
    xml = montar_pedido(CHAVE, "12345678000195", "203202", "<e203202/>", "1", "2026-10-18T10:00:00-03:00")
    assert f'Id="PRE{CHAVE}203202"' in xml
    assert "<CNPJAutor>12345678000195</CNPJAutor>" in xml
    assert f"<chNFSe>{CHAVE}</chNFSe>" in xml
    assert "<verAplic>1.0.0</verAplic>" in xml
    assert 'versao="1.01"' in xml
    assert "\n" not in xml and "\t" not in xml


def test_legacy_rejection_without_reason_fails_before_signing_or_network():
    builder, client, signer = make_builder([])
    res = builder.build_and_submit(cred(), CHAVE, "105103", "")
    assert not res.ok
    assert res.kind == ErrorKind.VALIDATION
    assert signer.signed == []
    assert client.submitted == []


@pytest.mark.parametrize("chave,cnpj", [(CHAVE[:-1], "12345678000195"), (CHAVE, "123")])
def test_malformed_identifiers_fail_validation(chave, cnpj):
    builder, client, _ = make_builder([])
    res = builder.build_and_submit(cred(cnpj), chave, "105101", "")
    assert res.kind == ErrorKind.VALIDATION
    assert client.submitted == []


def test_wording_rejection_falls_back_to_next_variant():
    ack = {"eventoXmlGZipB64": "H4sI"}
    builder, client, signer = make_builder([NfseClientError(WORDING_ERROR, 400), ack])
    res = builder.build_and_submit(cred(), CHAVE, "105103", "Servico nao foi prestado")
    assert res.ok
    assert res.value == ack
    assert len(client.submitted) == 2
    second = unpack(client.submitted[1][1])
    assert "<xDesc>Rejei&#xE7;&#xE3;o do Tomador</xDesc>" in second
    assert second.endswith("<Signature/></pedRegEvento>")
    assert [tag for _, tag in signer.signed] == ["infPedReg", "infPedReg"]


def test_other_failure_is_not_retried():
    builder, client, _ = make_builder([NfseClientError("registrarEvento: HTTP 500 indisponivel", 500), {}])
    res = builder.build_and_submit(cred(), CHAVE, "203202", "")
    assert res.kind == ErrorKind.TRANSPORT
    assert res.message == "registrarEvento: HTTP 500 indisponivel"
    assert len(client.submitted) == 1


def test_all_variants_rejected_surfaces_last_error():
    builder, client, _ = make_builder([NfseClientError(WORDING_ERROR, 400)] * 4)
    res = builder.build_and_submit(cred(), CHAVE, "203202", "")
    assert res.kind == ErrorKind.WORDING_REJECTED
    assert len(client.submitted) == 4


def test_cancellation_submits_single_variant():
    builder, client, _ = make_builder([NfseClientError(WORDING_ERROR, 400)])
    res = builder.cancelar(cred(), CHAVE, "2", "")
    assert not res.ok
    assert len(client.submitted) == 1
    assert "<e101101>" in unpack(client.submitted[0][1])


def test_classifiers():
    assert is_rate_limited(NfseClientError("x", status_code=429))
    assert not is_rate_limited(NfseClientError("x", status_code=400))
    assert is_wording_rejection(NfseClientError("HTTP 400", 400, body=WORDING_ERROR))
    assert not is_wording_rejection(NfseClientError("xDesc invalido", 400))
