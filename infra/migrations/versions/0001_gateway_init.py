from alembic import op
import sqlalchemy as sa

revision = "0001_gateway_init"
down_revision = None
branch_labels = None
depends_on = None

BIGINT = sa.BigInteger().with_variant(sa.Integer(), "sqlite")

TOKEN_COLUMNS = (
    "claude_input_tokens",
    "claude_output_tokens",
    "claude_total_tokens",
    "claude_cache_creation_input_tokens",
    "claude_cache_read_input_tokens",
    "gemini_prompt_tokens",
    "gemini_candidates_tokens",
    "gemini_total_tokens",
    "gemini_cached_tokens",
    "openai_chat_prompt_tokens",
    "openai_chat_completion_tokens",
    "openai_chat_total_tokens",
    "openai_responses_input_tokens",
    "openai_responses_output_tokens",
    "openai_responses_total_tokens",
    "openai_responses_input_cached_tokens",
    "openai_responses_output_reasoning_tokens",
)


def _traffic_columns():
    columns = [
        sa.Column("id", BIGINT, primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("provider", sa.String(64), nullable=False),
        sa.Column("provider_id", BIGINT, nullable=True),
        sa.Column("operation", sa.String(64), nullable=False),
        sa.Column("model", sa.String(255), nullable=True),
        sa.Column("request_id", sa.String(128), nullable=True),
        sa.Column("request_method", sa.String(16), nullable=False),
        sa.Column("request_path", sa.Text(), nullable=False),
        sa.Column("request_query", sa.Text(), nullable=True),
        sa.Column("request_headers", sa.Text(), nullable=False),
        sa.Column("request_body", sa.Text(), nullable=False),
        sa.Column("response_status", sa.Integer(), nullable=False),
        sa.Column("response_headers", sa.Text(), nullable=False),
        sa.Column("response_body", sa.Text(), nullable=False),
    ]
    columns.extend(sa.Column(name, BIGINT, nullable=True) for name in TOKEN_COLUMNS)
    return columns


def upgrade():
    op.create_table(
        "providers",
        sa.Column("id", BIGINT, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(64), nullable=False, unique=True),
        sa.Column("config_json", sa.JSON(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "credentials",
        sa.Column("id", BIGINT, primary_key=True, autoincrement=True),
        sa.Column(
            "provider_id",
            BIGINT,
            sa.ForeignKey("providers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("secret", sa.JSON(), nullable=False),
        sa.Column("meta_json", sa.JSON(), nullable=False),
        sa.Column("weight", sa.Integer(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_credentials_provider_id", "credentials", ["provider_id"])

    op.create_table(
        "credential_disallow",
        sa.Column("id", BIGINT, primary_key=True, autoincrement=True),
        sa.Column(
            "credential_id",
            BIGINT,
            sa.ForeignKey("credentials.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("scope_kind", sa.String(32), nullable=False),
        sa.Column("scope_value", sa.String(255), nullable=True),
        sa.Column("level", sa.String(16), nullable=False),
        sa.Column("until_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_credential_disallow_scope",
        "credential_disallow",
        ["credential_id", "scope_kind", "scope_value"],
    )

    op.create_table(
        "users",
        sa.Column("id", BIGINT, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "api_keys",
        sa.Column("id", BIGINT, primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            BIGINT,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("key_value", sa.String(255), nullable=False, unique=True),
        sa.Column("label", sa.String(255), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_api_keys_user_id", "api_keys", ["user_id"])

    op.create_table(
        "global_config",
        sa.Column("id", BIGINT, primary_key=True),
        sa.Column("config_json", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "upstream_traffic",
        *_traffic_columns(),
        sa.Column("credential_id", BIGINT, nullable=True),
    )
    op.create_index("ix_upstream_traffic_created_at", "upstream_traffic", ["created_at"])
    op.create_index(
        "ix_upstream_traffic_credential_created_at",
        "upstream_traffic",
        ["credential_id", "created_at"],
    )

    op.create_table(
        "downstream_traffic",
        *_traffic_columns(),
        sa.Column("user_id", BIGINT, nullable=True),
        sa.Column("key_id", BIGINT, nullable=True),
    )
    op.create_index("ix_downstream_traffic_created_at", "downstream_traffic", ["created_at"])


def downgrade():
    op.drop_index("ix_downstream_traffic_created_at", table_name="downstream_traffic")
    op.drop_table("downstream_traffic")
    op.drop_index("ix_upstream_traffic_credential_created_at", table_name="upstream_traffic")
    op.drop_index("ix_upstream_traffic_created_at", table_name="upstream_traffic")
    op.drop_table("upstream_traffic")
    op.drop_table("global_config")
    op.drop_index("ix_api_keys_user_id", table_name="api_keys")
    op.drop_table("api_keys")
    op.drop_table("users")
    op.drop_index("ix_credential_disallow_scope", table_name="credential_disallow")
    op.drop_table("credential_disallow")
    op.drop_index("ix_credentials_provider_id", table_name="credentials")
    op.drop_table("credentials")
    op.drop_table("providers")
