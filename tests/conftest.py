"""
Pytest configuration and shared fixtures for registry tests.

The repositories are replaced by in-memory fakes that honour the same
contract as the SQLAlchemy ones: unique act number and one act per subject
per variant, ``DuplicateError`` on violation, and savepoints that undo
every change made inside them when the block raises.
"""

from datetime import date, timedelta
from typing import Optional

import pytest

from etatcivil.db.orm import (
    ActVariant,
    CivilAct,
    Commune,
    MaritalStatus,
    Person,
    Province,
    Sex,
    TerritorialEntity,
    VitalStatus,
)
from etatcivil.errors import (
    ACT_NUMBER_EXISTS,
    SUBJECT_HAS_ACT,
    DuplicateError,
)
from etatcivil.registry import (
    ActCoordinator,
    BatchProcessor,
    BatchValidator,
    PersonService,
)
from etatcivil.registry.schemas import ActCreate, BatchItem, Page
from etatcivil.registry.statistics import ActFacts

TODAY = date.today()


class FakeSavepoint:
    """Async context manager restoring the store when the block raises."""

    def __init__(self, store: "FakeStore"):
        self.store = store
        self.snapshot = None

    async def __aenter__(self):
        self.snapshot = self.store.snapshot()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.store.restore(self.snapshot)
        return False


class FakeStore:
    """Shared in-memory tables."""

    def __init__(self):
        self.provinces: dict[int, Province] = {}
        self.communes: dict[int, Commune] = {}
        self.persons: dict[int, Person] = {}
        self.acts: dict[int, CivilAct] = {}
        self.next_person_id = 1
        self.next_act_id = 1
        self.fail_person_saves = False
        self.writes = 0

    def snapshot(self) -> dict:
        return {
            "acts": dict(self.acts),
            "persons": dict(self.persons),
            "statuses": {
                pid: (p.vital_status, p.marital_status) for pid, p in self.persons.items()
            },
            "next_act_id": self.next_act_id,
        }

    def restore(self, snapshot: dict) -> None:
        self.acts = snapshot["acts"]
        self.persons = snapshot["persons"]
        for pid, (vital, marital) in snapshot["statuses"].items():
            self.persons[pid].vital_status = vital
            self.persons[pid].marital_status = marital
        self.next_act_id = snapshot["next_act_id"]

    def savepoint(self) -> FakeSavepoint:
        return FakeSavepoint(self)

    def add_commune(self, commune_id: int, name: str, entity: TerritorialEntity) -> Commune:
        commune = Commune(id=commune_id, name=name, entity_id=entity.id, entity=entity)
        self.communes[commune_id] = commune
        return commune

    def add_person(self, **fields) -> Person:
        fields.setdefault("vital_status", VitalStatus.ALIVE)
        fields.setdefault("marital_status", MaritalStatus.SINGLE)
        person = Person(id=self.next_person_id, **fields)
        self.persons[person.id] = person
        self.next_person_id += 1
        return person

    def acts_of(self, variant: ActVariant) -> list[CivilAct]:
        return [act for act in self.acts.values() if act.variant == variant]


class FakePersonRepository:
    """In-memory PersonRepository."""

    def __init__(self, store: FakeStore):
        self.store = store

    def savepoint(self) -> FakeSavepoint:
        return self.store.savepoint()

    async def get_by_id(self, person_id: int) -> Optional[Person]:
        return self.store.persons.get(person_id)

    async def get_by_ids(self, person_ids: list[int]) -> list[Person]:
        return [self.store.persons[pid] for pid in person_ids if pid in self.store.persons]

    async def find_by_identity(self, surname, patronymic, given_name, birth_date):
        for person in self.store.persons.values():
            if (
                person.surname == surname
                and person.patronymic == patronymic
                and person.given_name == given_name
                and person.birth_date == birth_date
            ):
                return person
        return None

    async def is_parent(self, person_id: int) -> bool:
        return any(
            person_id in (p.father_id, p.mother_id) for p in self.store.persons.values()
        )

    async def add(self, person: Person) -> Person:
        person.id = self.store.next_person_id
        self.store.next_person_id += 1
        if person.father_id:
            person.father = self.store.persons[person.father_id]
        if person.mother_id:
            person.mother = self.store.persons[person.mother_id]
        self.store.persons[person.id] = person
        self.store.writes += 1
        return person

    async def save(self, person: Person) -> Person:
        if self.store.fail_person_saves:
            raise RuntimeError("person store unavailable")
        self.store.writes += 1
        return person

    async def delete(self, person: Person) -> None:
        if any(act.subject_id == person.id for act in self.store.acts.values()):
            raise DuplicateError(
                "The person is referenced by a civil act and cannot be deleted"
            )
        del self.store.persons[person.id]
        self.store.writes += 1

    async def search(self, criteria, page) -> Page[Person]:
        matches = [
            p
            for p in self.store.persons.values()
            if (criteria.father_id is None or p.father_id == criteria.father_id)
            and (criteria.mother_id is None or p.mother_id == criteria.mother_id)
        ]
        content = matches[page.offset:page.offset + page.size]
        return Page[Person].build(content, len(matches), page.page, page.size)


class FakeActRepository:
    """In-memory ActRepository enforcing both unique constraints."""

    def __init__(self, store: FakeStore):
        self.store = store

    def savepoint(self) -> FakeSavepoint:
        return self.store.savepoint()

    def _find(self, variant: ActVariant, **attrs) -> Optional[CivilAct]:
        for act in self.store.acts_of(variant):
            if all(getattr(act, k) == v for k, v in attrs.items()):
                return act
        return None

    async def get_by_id(self, variant, act_id):
        return self._find(variant, id=act_id)

    async def get_by_number(self, variant, act_number):
        return self._find(variant, act_number=act_number)

    async def get_by_subject(self, variant, subject_id):
        return self._find(variant, subject_id=subject_id)

    async def number_exists(self, variant, act_number, exclude_id=None) -> bool:
        act = self._find(variant, act_number=act_number)
        return act is not None and act.id != exclude_id

    async def subject_has_act(self, variant, subject_id) -> bool:
        return self._find(variant, subject_id=subject_id) is not None

    def _wire(self, act: CivilAct) -> None:
        act.subject = self.store.persons[act.subject_id]
        act.commune = self.store.communes[act.commune_id]

    async def add(self, act: CivilAct) -> CivilAct:
        if self._find(act.variant, act_number=act.act_number):
            raise DuplicateError(ACT_NUMBER_EXISTS, field="act_number")
        if self._find(act.variant, subject_id=act.subject_id):
            raise DuplicateError(SUBJECT_HAS_ACT, field="subject_id")
        act.id = self.store.next_act_id
        self.store.next_act_id += 1
        self._wire(act)
        self.store.acts[act.id] = act
        self.store.writes += 1
        return act

    async def save(self, act: CivilAct) -> CivilAct:
        other = self._find(act.variant, act_number=act.act_number)
        if other is not None and other.id != act.id:
            raise DuplicateError(ACT_NUMBER_EXISTS, field="act_number")
        self._wire(act)
        self.store.writes += 1
        return act

    async def delete(self, act: CivilAct) -> None:
        del self.store.acts[act.id]
        self.store.writes += 1

    async def count(self, variant, commune_id=None, entity_id=None, province_id=None) -> int:
        acts = self.store.acts_of(variant)
        if commune_id is not None:
            acts = [a for a in acts if a.commune_id == commune_id]
        if entity_id is not None:
            acts = [a for a in acts if a.commune.entity_id == entity_id]
        if province_id is not None:
            acts = [a for a in acts if a.commune.entity.province_id == province_id]
        return len(acts)

    async def statistics_facts(self, variant) -> list[ActFacts]:
        return [
            ActFacts(
                registration_date=act.registration_date,
                decisive_date=(
                    act.death_date if variant == ActVariant.DEATH else act.subject.birth_date
                ),
                birth_date=act.subject.birth_date,
                sex=act.subject.sex,
                commune=act.commune.name,
                officer=act.officer,
                cause_of_death=act.cause_of_death,
                physician=act.physician,
            )
            for act in self.store.acts_of(variant)
        ]


class FakeTerritoryRepository:
    def __init__(self, store: FakeStore):
        self.store = store

    def savepoint(self) -> FakeSavepoint:
        return self.store.savepoint()

    async def get_commune(self, commune_id: int) -> Optional[Commune]:
        return self.store.communes.get(commune_id)

    async def commune_exists(self, commune_id: int) -> bool:
        return commune_id in self.store.communes


@pytest.fixture
def store() -> FakeStore:
    """
    Store seeded with two provinces, three communes and four persons.

    Persons:
        1 - KABILA MUTOMBO Jean, male, born 1950-05-10, alive
        2 - MBUYI KALALA Marie, female, born 1960-03-15, alive
        3 - KABILA NGOY Paul, male, born 1985-01-01, son of 1 and 2
        4 - TSHIBANDA MWAMBA Grace, female, born ten days ago
    """
    s = FakeStore()

    kinshasa = Province(id=1, name="Kinshasa")
    katanga = Province(id=2, name="Haut-Katanga")
    s.provinces = {1: kinshasa, 2: katanga}
    ville_kinshasa = TerritorialEntity(
        id=1, name="Kinshasa", is_city=True, province_id=1, province=kinshasa
    )
    lubumbashi = TerritorialEntity(
        id=2, name="Lubumbashi", is_city=True, province_id=2, province=katanga
    )
    s.add_commune(1, "Gombe", ville_kinshasa)
    s.add_commune(2, "Lemba", ville_kinshasa)
    s.add_commune(3, "Kenya", lubumbashi)

    s.add_person(
        surname="KABILA", patronymic="MUTOMBO", given_name="JEAN",
        sex=Sex.MALE, birth_date=date(1950, 5, 10),
    )
    s.add_person(
        surname="MBUYI", patronymic="KALALA", given_name="MARIE",
        sex=Sex.FEMALE, birth_date=date(1960, 3, 15),
    )
    s.add_person(
        surname="KABILA", patronymic="NGOY", given_name="PAUL",
        sex=Sex.MALE, birth_date=date(1985, 1, 1), father_id=1, mother_id=2,
    )
    s.add_person(
        surname="TSHIBANDA", patronymic="MWAMBA", given_name="GRACE",
        sex=Sex.FEMALE, birth_date=TODAY - timedelta(days=10),
    )
    return s


@pytest.fixture
def person_repo(store: FakeStore) -> FakePersonRepository:
    return FakePersonRepository(store)


@pytest.fixture
def act_repo(store: FakeStore) -> FakeActRepository:
    return FakeActRepository(store)


@pytest.fixture
def territory_repo(store: FakeStore) -> FakeTerritoryRepository:
    return FakeTerritoryRepository(store)


@pytest.fixture
def coordinator(act_repo, person_repo, territory_repo) -> ActCoordinator:
    """Coordinator over the fakes with the default registry rules."""
    return ActCoordinator(
        act_repo,
        person_repo,
        territory_repo,
        act_number_min_length=5,
        max_age_at_death_years=120,
    )


@pytest.fixture
def processor(coordinator: ActCoordinator) -> BatchProcessor:
    return BatchProcessor(coordinator, max_size=100, late_after_days=30)


@pytest.fixture
def validator(act_repo, person_repo, territory_repo) -> BatchValidator:
    return BatchValidator(
        act_repo,
        person_repo,
        territory_repo,
        max_size=100,
        late_after_days=30,
        act_number_min_length=5,
        max_age_at_death_years=120,
    )


@pytest.fixture
def person_service(person_repo) -> PersonService:
    return PersonService(person_repo)


def death_request(**overrides) -> ActCreate:
    """Valid death act request for person 1 in commune 1."""
    fields = {
        "act_number": "DEC-2024-001",
        "subject_id": 1,
        "commune_id": 1,
        "officer": "Officier Lukusa",
        "registration_date": TODAY,
        "declarant": "Kabila Ngoy Paul",
        "witness1": "Ilunga Kasongo",
        "witness2": "Mbuyi Tshala",
        "death_date": TODAY - timedelta(days=1),
        "death_place": "Hôpital",
        "cause_of_death": "Paludisme",
    }
    fields.update(overrides)
    return ActCreate(**fields)


def birth_request(**overrides) -> ActCreate:
    """Valid birth act request for person 4 in commune 2."""
    fields = {
        "act_number": "NAI-2024-001",
        "subject_id": 4,
        "commune_id": 2,
        "officer": "Officier Lukusa",
        "registration_date": TODAY,
        "declarant": "Tshibanda Jean",
    }
    fields.update(overrides)
    return ActCreate(**fields)


def batch_item(**overrides) -> BatchItem:
    return BatchItem(**death_request(**overrides).model_dump())


@pytest.fixture
def make_death_request():
    return death_request


@pytest.fixture
def make_birth_request():
    return birth_request


@pytest.fixture
def make_batch_item():
    return batch_item
