"""Initial schema for the civil registry

Revision ID: 0001
Revises:
Create Date: 2025-01-01 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create enum types (SQLAlchemy stores enum member names)
    op.execute("CREATE TYPE sex AS ENUM ('MALE', 'FEMALE')")
    op.execute("CREATE TYPE vitalstatus AS ENUM ('ALIVE', 'DECEASED', 'UNKNOWN')")
    op.execute(
        "CREATE TYPE maritalstatus AS ENUM "
        "('SINGLE', 'MARRIED', 'WIDOWED', 'DIVORCED', 'SEPARATED')"
    )
    op.execute("CREATE TYPE actvariant AS ENUM ('BIRTH', 'DEATH')")

    # Territorial hierarchy (reference data)
    op.create_table(
        "provinces",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False),
    )

    op.create_table(
        "territorial_entities",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("is_city", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("province_id", sa.Integer, sa.ForeignKey("provinces.id"), nullable=False),
    )
    op.create_index("idx_entities_province", "territorial_entities", ["province_id"])

    op.create_table(
        "communes",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column(
            "entity_id", sa.Integer, sa.ForeignKey("territorial_entities.id"), nullable=False
        ),
    )
    op.create_index("idx_communes_entity", "communes", ["entity_id"])

    # Persons
    op.create_table(
        "persons",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("surname", sa.String(50), nullable=False),
        sa.Column("patronymic", sa.String(50), nullable=False),
        sa.Column("given_name", sa.String(50)),
        sa.Column(
            "sex",
            sa.Enum("MALE", "FEMALE", name="sex", create_type=False),
            nullable=False,
        ),
        sa.Column("birth_date", sa.Date),
        sa.Column("birth_time", sa.Time),
        sa.Column("birthplace", sa.String(100)),
        sa.Column("profession", sa.String(100)),
        sa.Column("nationality", sa.String(50)),
        sa.Column("address", sa.String(200)),
        sa.Column("phone", sa.String(20)),
        sa.Column("email", sa.String(50)),
        sa.Column("father_id", sa.Integer, sa.ForeignKey("persons.id")),
        sa.Column("mother_id", sa.Integer, sa.ForeignKey("persons.id")),
        sa.Column(
            "vital_status",
            sa.Enum("ALIVE", "DECEASED", "UNKNOWN", name="vitalstatus", create_type=False),
            nullable=False,
            server_default="ALIVE",
        ),
        sa.Column(
            "marital_status",
            sa.Enum(
                "SINGLE",
                "MARRIED",
                "WIDOWED",
                "DIVORCED",
                "SEPARATED",
                name="maritalstatus",
                create_type=False,
            ),
            nullable=False,
            server_default="SINGLE",
        ),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "surname", "patronymic", "given_name", "birth_date",
            name="uq_persons_identity",
        ),
    )
    op.create_index("idx_persons_surname", "persons", ["surname"])
    op.create_index("idx_persons_birth_date", "persons", ["birth_date"])

    # Civil acts (birth and death)
    op.create_table(
        "civil_acts",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "variant",
            sa.Enum("BIRTH", "DEATH", name="actvariant", create_type=False),
            nullable=False,
        ),
        sa.Column("act_number", sa.String(30), nullable=False),
        sa.Column("subject_id", sa.Integer, sa.ForeignKey("persons.id"), nullable=False),
        sa.Column("commune_id", sa.Integer, sa.ForeignKey("communes.id"), nullable=False),
        sa.Column("officer", sa.String(100), nullable=False),
        sa.Column("registration_date", sa.Date, nullable=False),
        sa.Column("declarant", sa.String(100)),
        sa.Column("witness1", sa.String(100)),
        sa.Column("witness2", sa.String(100)),
        sa.Column("observations", sa.String(500)),
        sa.Column("death_date", sa.Date),
        sa.Column("death_time", sa.Time),
        sa.Column("death_place", sa.String(150)),
        sa.Column("cause_of_death", sa.String(200)),
        sa.Column("physician", sa.String(100)),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        # One act per number and one act per person, for each variant
        sa.UniqueConstraint("variant", "act_number", name="uq_civil_acts_variant_number"),
        sa.UniqueConstraint("variant", "subject_id", name="uq_civil_acts_variant_subject"),
    )
    op.create_index("idx_civil_acts_commune", "civil_acts", ["commune_id"])
    op.create_index(
        "idx_civil_acts_registration", "civil_acts", ["variant", "registration_date"]
    )


def downgrade() -> None:
    op.drop_table("civil_acts")
    op.drop_table("persons")
    op.drop_table("communes")
    op.drop_table("territorial_entities")
    op.drop_table("provinces")

    op.execute("DROP TYPE actvariant")
    op.execute("DROP TYPE maritalstatus")
    op.execute("DROP TYPE vitalstatus")
    op.execute("DROP TYPE sex")
