"""
Tests for multi-criteria query composition.

Statements are executed on an in-memory SQLite database so that filters,
ordering and counts are checked against real rows.
"""

from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from etatcivil.db.orm import (
    ActVariant,
    Base,
    CivilAct,
    Commune,
    Person,
    Province,
    Sex,
    TerritorialEntity,
    VitalStatus,
)
from etatcivil.errors import InvalidQueryError
from etatcivil.registry import (
    ActSearchCriteria,
    PageRequest,
    PersonSearchCriteria,
    QueryComposer,
    SortDirection,
)
from etatcivil.registry.query import birth_date_bounds

TODAY = date(2024, 6, 15)


@pytest.fixture
def session():
    """SQLite session seeded with five persons and four acts."""
    engine = create_engine("sqlite://")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        session.add_all([
            Province(id=1, name="Kinshasa"),
            Province(id=2, name="Haut-Katanga"),
            TerritorialEntity(id=1, name="Kinshasa", is_city=True, province_id=1),
            TerritorialEntity(id=2, name="Lubumbashi", is_city=True, province_id=2),
            Commune(id=1, name="Gombe", entity_id=1),
            Commune(id=2, name="Lemba", entity_id=1),
            Commune(id=3, name="Kenya", entity_id=2),
            Person(id=1, surname="KABILA", patronymic="MUTOMBO", given_name="JEAN",
                   sex=Sex.MALE, birth_date=date(1950, 5, 10),
                   vital_status=VitalStatus.DECEASED),
            Person(id=2, surname="MBUYI", patronymic="KALALA", given_name="MARIE",
                   sex=Sex.FEMALE, birth_date=date(1960, 3, 15),
                   vital_status=VitalStatus.DECEASED),
            Person(id=3, surname="KABILA", patronymic="NGOY", given_name="PAUL",
                   sex=Sex.MALE, birth_date=date(1985, 1, 1), father_id=1, mother_id=2),
            Person(id=4, surname="TSHIBANDA", patronymic="MWAMBA", given_name="GRACE",
                   sex=Sex.FEMALE, birth_date=date(2024, 6, 1)),
            Person(id=5, surname="ILUNGA", patronymic="KASONGO",
                   sex=Sex.MALE, birth_date=date(2004, 6, 15)),
        ])
        session.flush()
        session.add_all([
            CivilAct(id=1, variant=ActVariant.DEATH, act_number="DEC-2024-001",
                     subject_id=1, commune_id=1, officer="Lukusa",
                     registration_date=date(2024, 3, 2), death_date=date(2024, 3, 1),
                     death_place="Hôpital Général"),
            CivilAct(id=2, variant=ActVariant.DEATH, act_number="DEC-2024-002",
                     subject_id=2, commune_id=3, officer="Mbala",
                     registration_date=date(2024, 5, 20), death_date=date(2024, 1, 10),
                     death_place="Domicile"),
            CivilAct(id=3, variant=ActVariant.BIRTH, act_number="NAI-2024-001",
                     subject_id=4, commune_id=2, officer="Lukusa",
                     registration_date=date(2024, 6, 3)),
            CivilAct(id=4, variant=ActVariant.BIRTH, act_number="NAI-1985-017",
                     subject_id=3, commune_id=1, officer="Mbala",
                     registration_date=date(1985, 1, 20)),
        ])
        session.commit()
        yield session

    engine.dispose()


def run(session, statements):
    page_stmt, count_stmt = statements
    rows = session.execute(page_stmt).scalars().all()
    return [row.id for row in rows], session.execute(count_stmt).scalar_one()


class TestActQueries:
    """Tests for act search statements."""

    def test_no_criteria_lists_every_act_of_the_variant(self, session):
        composer = QueryComposer()

        ids, total = run(session, composer.acts(ActVariant.DEATH, ActSearchCriteria(), PageRequest()))

        assert total == 2
        assert ids == [2, 1]

    def test_surname_fragment_is_case_insensitive(self, session):
        composer = QueryComposer()

        ids, total = run(
            session,
            composer.acts(ActVariant.DEATH, ActSearchCriteria(surname="kabi"), PageRequest()),
        )

        assert ids == [1]
        assert total == 1

    @pytest.mark.parametrize("fragment", ["%", "_", "\\", "Hôpital%"])
    def test_wildcards_in_fragment_match_literally(self, session, fragment):
        """No stored name or place contains these characters."""
        composer = QueryComposer()

        by_surname, _ = run(
            session,
            composer.acts(ActVariant.DEATH, ActSearchCriteria(surname=fragment), PageRequest()),
        )
        by_place, total = run(
            session,
            composer.acts(ActVariant.DEATH, ActSearchCriteria(death_place=fragment), PageRequest()),
        )

        assert by_surname == []
        assert by_place == []
        assert total == 0

    def test_escaped_fragment_still_matches_plain_text(self, session):
        composer = QueryComposer()

        ids, _ = run(
            session,
            composer.acts(ActVariant.DEATH, ActSearchCriteria(death_place="hôpital gé"), PageRequest()),
        )

        assert ids == [1]

    def test_act_number_fragment_is_normalized(self, session):
        composer = QueryComposer()

        ids, _ = run(
            session,
            composer.acts(ActVariant.BIRTH, ActSearchCriteria(act_number=" nai-2024"), PageRequest()),
        )

        assert ids == [3]

    def test_territory_filters(self, session):
        composer = QueryComposer()

        by_province, _ = run(
            session,
            composer.acts(ActVariant.DEATH, ActSearchCriteria(province_id=2), PageRequest()),
        )
        by_entity, _ = run(
            session,
            composer.acts(ActVariant.BIRTH, ActSearchCriteria(entity_id=1), PageRequest()),
        )

        assert by_province == [2]
        assert sorted(by_entity) == [3, 4]

    def test_decisive_date_range_per_variant(self, session):
        """Death acts filter on the death date, birth acts on the birth date."""
        composer = QueryComposer()
        criteria = ActSearchCriteria(
            decisive_date_from=date(2024, 2, 1), decisive_date_to=date(2024, 6, 30)
        )

        deaths, _ = run(session, composer.acts(ActVariant.DEATH, criteria, PageRequest()))
        births, _ = run(session, composer.acts(ActVariant.BIRTH, criteria, PageRequest()))

        assert deaths == [1]
        assert births == [3]

    def test_combined_criteria_are_anded(self, session):
        composer = QueryComposer()
        criteria = ActSearchCriteria(officer="mbala", death_place="domicile", sex=Sex.FEMALE)

        ids, _ = run(session, composer.acts(ActVariant.DEATH, criteria, PageRequest()))

        assert ids == [2]

    def test_sort_and_paging(self, session):
        composer = QueryComposer()
        page = PageRequest(page=1, size=1, sort_by="act_number", direction=SortDirection.ASC)

        ids, total = run(session, composer.acts(ActVariant.BIRTH, ActSearchCriteria(), page))

        assert ids == [3]
        assert total == 2

    def test_unknown_sort_field(self):
        composer = QueryComposer()

        with pytest.raises(InvalidQueryError) as exc_info:
            composer.acts(ActVariant.DEATH, ActSearchCriteria(), PageRequest(sort_by="password"))

        assert exc_info.value.field == "sort_by"

    @pytest.mark.parametrize("page,size", [(-1, 20), (0, 0), (0, 101)])
    def test_invalid_paging(self, page, size):
        composer = QueryComposer(max_page_size=100)

        with pytest.raises(InvalidQueryError):
            composer.acts(ActVariant.DEATH, ActSearchCriteria(), PageRequest(page=page, size=size))


class TestPersonQueries:
    """Tests for person search statements."""

    def test_default_order_is_surname(self, session):
        composer = QueryComposer()

        ids, total = run(session, composer.persons(PersonSearchCriteria(), PageRequest(), TODAY))

        assert total == 5
        assert ids == [5, 1, 3, 2, 4]

    def test_age_range(self, session):
        """Person 5 turns 20 today and is inside an age range of 18 to 20."""
        composer = QueryComposer()
        criteria = PersonSearchCriteria(age_min=18, age_max=20)

        ids, _ = run(session, composer.persons(criteria, PageRequest(), TODAY))

        assert ids == [5]

    def test_explicit_bound_tighter_than_age(self):
        criteria = PersonSearchCriteria(age_max=80, birth_date_from=date(1960, 1, 1))

        earliest, latest = birth_date_bounds(criteria, TODAY)

        assert earliest == date(1960, 1, 1)
        assert latest is None

    def test_children_of_a_father(self, session):
        composer = QueryComposer()

        ids, _ = run(
            session,
            composer.persons(PersonSearchCriteria(father_id=1), PageRequest(), TODAY),
        )

        assert ids == [3]

    def test_status_filter(self, session):
        composer = QueryComposer()
        criteria = PersonSearchCriteria(vital_status=VitalStatus.DECEASED, sex=Sex.FEMALE)

        ids, _ = run(session, composer.persons(criteria, PageRequest(), TODAY))

        assert ids == [2]

    def test_negative_age(self):
        composer = QueryComposer()

        with pytest.raises(InvalidQueryError):
            composer.persons(PersonSearchCriteria(age_min=-1), PageRequest(), TODAY)
