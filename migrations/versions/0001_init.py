"""init: empresas, certificados, nsu_cursor_cache"""
from alembic import op
import sqlalchemy as sa
revision = "0001_init"; down_revision = None; branch_labels=None; depends_on=None

def upgrade():
    op.create_table("empresas",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("cnpj", sa.String(14), nullable=False),
        sa.Column("razao_social", sa.String(200), nullable=False),
        sa.Column("ambiente", sa.String(10), nullable=False, server_default="homolog"),
        sa.Column("ativo", sa.Integer, nullable=False, server_default="1"),
    )
    op.create_table("certificados",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("empresa_id", sa.Integer, sa.ForeignKey("empresas.id"), nullable=False),
        sa.Column("tipo", sa.String(2), nullable=False, server_default="A1"),
        sa.Column("pfx_path", sa.Text, nullable=False),
        sa.Column("senha_cripto", sa.Text, nullable=False),
    )
    op.create_table("nsu_cursor_cache",
        sa.Column("chave", sa.String(120), primary_key=True),
        sa.Column("valor", sa.BigInteger, nullable=False),
        sa.Column("expires_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_empresas_cnpj", "empresas", ["cnpj"], unique=True)
    op.create_index("ix_certificados_empresa_id", "certificados", ["empresa_id"])
    op.create_index("ix_nsu_cursor_cache_expires_at", "nsu_cursor_cache", ["expires_at"])

def downgrade():
    op.drop_index("ix_nsu_cursor_cache_expires_at", table_name="nsu_cursor_cache")
    op.drop_index("ix_certificados_empresa_id", table_name="certificados")
    op.drop_index("ix_empresas_cnpj", table_name="empresas")
    op.drop_table("nsu_cursor_cache")
    op.drop_table("certificados")
    op.drop_table("empresas")
