"""
Pytest configuration and fixtures for incentive-pipeline tests

This module provides shared fixtures for unit, integration, and E2E tests.
"""
import os
import pytest
from typing import Generator
from testcontainers.postgres import PostgresContainer
import psycopg

from incentive.core.models import (
    CalculationResult,
    ColumnMapping,
    CommittedDataRow,
    ComponentResult,
    Entity,
    Period,
    TenantContext,
)
from incentive.core.rules import PlanConfigBuilder
from incentive.warehouse.connection import DatabaseConnectionPool
from incentive.warehouse.postgres_store import PostgresDataStore
from incentive.warehouse.store import InMemoryDataStore


TENANT_ID = "acme"


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that test the full pipeline"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """
    Start PostgreSQL container for integration tests

    Yields:
        PostgresContainer instance with initialized database
    """
    with PostgresContainer(
        image="postgres:16.2-alpine",
        username="test_pipeline",
        password="test_password",
        dbname="test_incentives",
        driver=None,
    ) as postgres:
        # Run init script
        init_sql_path = os.path.join(
            os.path.dirname(os.path.dirname(__file__)),
            "docker",
            "init-db.sql"
        )

        with open(init_sql_path, 'r') as f:
            init_sql = f.read()

        conn_url = postgres.get_connection_url()
        with psycopg.connect(conn_url) as conn:
            with conn.cursor() as cur:
                cur.execute(init_sql)
            conn.commit()

        yield postgres


@pytest.fixture(scope="function")
def db_connection(postgres_container) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a database connection for a single test

    Yields:
        psycopg Connection object
    """
    conn_url = postgres_container.get_connection_url()
    with psycopg.connect(conn_url) as conn:
        yield conn
        conn.rollback()


@pytest.fixture(scope="function")
def clean_db(db_connection) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a clean database by truncating all tables before each test

    Yields:
        psycopg Connection object with clean database
    """
    with db_connection.cursor() as cur:
        # Children first (foreign keys)
        cur.execute("TRUNCATE TABLE batch_audit_log CASCADE")
        cur.execute("TRUNCATE TABLE calculation_result CASCADE")
        cur.execute("TRUNCATE TABLE calculation_batch CASCADE")
        cur.execute("TRUNCATE TABLE committed_data CASCADE")
        cur.execute("TRUNCATE TABLE rule_set_assignment CASCADE")
        cur.execute("TRUNCATE TABLE rule_set CASCADE")
        cur.execute("TRUNCATE TABLE entity CASCADE")
        cur.execute("TRUNCATE TABLE period CASCADE")

        db_connection.commit()

    yield db_connection


@pytest.fixture(scope="function")
def db_pool(postgres_container, clean_db) -> Generator[DatabaseConnectionPool, None, None]:
    """
    Open connection pool against the test container

    Yields:
        Open DatabaseConnectionPool
    """
    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_incentives",
        user="test_pipeline",
        password="test_password",
        min_size=1,
        max_size=4,
    )
    with pool:
        yield pool


@pytest.fixture(scope="function")
def pg_store(db_pool) -> PostgresDataStore:
    """PostgresDataStore over a clean database"""
    return PostgresDataStore(db_pool)


@pytest.fixture(scope="function")
def pg_seeded_store(pg_store, january_period, retail_rule_set, retail_entities) -> PostgresDataStore:
    """PostgresDataStore holding the same data as seeded_store"""
    pg_store.save_period(january_period)
    pg_store.save_rule_set(retail_rule_set)
    pg_store.save_entities(retail_entities)
    pg_store.insert_committed_data(sales_rows(january_period.id))
    return pg_store


# =======================
# DOMAIN FIXTURES
# =======================

@pytest.fixture
def tenant_context() -> TenantContext:
    """Tenant scope used by most tests"""
    return TenantContext(tenant_id=TENANT_ID, actor="analyst@acme")


@pytest.fixture
def memory_store() -> InMemoryDataStore:
    """Empty in-memory data store"""
    return InMemoryDataStore()


@pytest.fixture
def january_period() -> Period:
    return Period.for_month(TENANT_ID, 2024, 1)


@pytest.fixture
def retail_rule_set():
    """
    Two component plan:
    - sales-bonus: tier lookup on attainment (0 / 500 / 1000)
    - commission: 2% of the sales amount
    """
    return PlanConfigBuilder(TENANT_ID, "Retail 2024", rule_set_id="retail-2024") \
        .add_tier_lookup(
            "sales-bonus", "sales_attainment",
            [(0, 80, 0), (80, 100, 500), (100, None, 1000)],
            name="Sales bonus",
        ) \
        .add_percentage("commission", "sales_amount", rate=0.02, name="Commission") \
        .build()


@pytest.fixture
def retail_entities() -> list[Entity]:
    return [
        Entity(id="ent-1001", tenant_id=TENANT_ID, external_id="1001",
               display_name="Ana Lopez", role="Sales Rep", store_id="12"),
        Entity(id="ent-1002", tenant_id=TENANT_ID, external_id="1002",
               display_name="Luis Perez", role="Sales Rep", store_id="12"),
        Entity(id="ent-1003", tenant_id=TENANT_ID, external_id="1003",
               display_name="Marta Ruiz", role="Sales Rep", store_id="14"),
    ]


def sales_rows(period_id: str) -> list[CommittedDataRow]:
    """
    January sales for 1001 and 1002; 1003 has no rows.

    Expected payouts under retail_rule_set:
    - 1001: attainment 91.79 -> 500, commission 1285.00 -> 1785.00
    - 1002: attainment 110.0 -> 1000, commission 2200.00 -> 3200.00
    - 1003: no data -> 0.00
    """
    return [
        CommittedDataRow(
            tenant_id=TENANT_ID,
            entity_id="ent-1001",
            period_id=period_id,
            data_type="ventas",
            row_data={"employee_id": "1001", "sales_amount": 64250, "sales_goal": 70000},
        ),
        CommittedDataRow(
            tenant_id=TENANT_ID,
            entity_id="ent-1002",
            period_id=period_id,
            data_type="ventas",
            row_data={"employee_id": "1002", "sales_amount": 110000, "sales_goal": 100000},
        ),
    ]


@pytest.fixture
def seeded_store(memory_store, january_period, retail_rule_set, retail_entities) -> InMemoryDataStore:
    """In-memory store holding one period, the retail plan, three entities and their sales"""
    memory_store.save_period(january_period)
    memory_store.save_rule_set(retail_rule_set)
    memory_store.save_entities(retail_entities)
    memory_store.insert_committed_data(sales_rows(january_period.id))
    return memory_store


# =======================
# UPLOAD FIXTURES
# =======================

@pytest.fixture
def roster_rows() -> list[dict]:
    """60 row roster: sequential ids, names, roles, regions and licenses"""
    return [
        {
            "employee_id": 1001 + i,
            "name": f"Employee {i:02d}",
            "role": "Certified Optometrist" if i % 2 else "Sales Rep",
            "region": "North" if i % 3 else "South",
            "product_licenses": "optical,insurance" if i % 2 else "optical",
        }
        for i in range(60)
    ]


@pytest.fixture
def transaction_rows() -> list[dict]:
    """600 dated sales rows over three employees and two months"""
    return [
        {
            "employee_id": 1001 + (i % 3),
            "date": f"2024-0{1 + i % 2}-{1 + i % 28:02d}",
            "sales_amount": 100 + i + 0.25,
        }
        for i in range(600)
    ]


@pytest.fixture
def target_rows() -> list[dict]:
    return [
        {"employee_id": 1001, "sales_goal": 70000},
        {"employee_id": 1002, "sales_goal": 100000},
        {"employee_id": 1003, "sales_goal": 85000},
    ]


@pytest.fixture
def plan_rows() -> list[dict]:
    """Sparse rule table with spreadsheet-generated headers"""
    return [
        {"__EMPTY": "Tier 1", "__EMPTY_1": "80%", "__EMPTY_2": None, "__EMPTY_3": None},
        {"__EMPTY": "Tier 2", "__EMPTY_1": "100%", "__EMPTY_2": None, "__EMPTY_3": None},
        {"__EMPTY": "Tier 3", "__EMPTY_1": "120%", "__EMPTY_2": "500", "__EMPTY_3": None},
    ]


@pytest.fixture
def team_goal_rows() -> list[dict]:
    """Roster columns and goal columns in one tab"""
    return [
        {
            "employee_id": 2001 + i,
            "name": f"Rep {i}",
            "role": "Optometrist" if i % 2 else "Sales Rep",
            "region": "North" if i % 2 else "South",
            "product_licenses": "optical",
            "sales_goal": 50000 + 5000 * i,
            "new_customers_goal": 20 + 2 * i,
        }
        for i in range(10)
    ]


# =======================
# RECONCILIATION FIXTURES
# =======================

def _result(external_id: str, name: str, store_id: str, bonus: float, commission: float) -> CalculationResult:
    return CalculationResult(
        tenant_id=TENANT_ID,
        entity_id=f"ent-{external_id}",
        external_id=external_id,
        entity_name=name,
        store_id=store_id,
        period_id="per-2024-01",
        rule_set_id="retail-2024",
        batch_id="batch-1",
        total_payout=bonus + commission,
        components=[
            ComponentResult(component_id="sales-bonus", component_name="Sales bonus",
                            component_type="tier_lookup", payout=bonus,
                            metrics={"sales_attainment": 95.0}),
            ComponentResult(component_id="commission", component_name="Commission",
                            component_type="percentage", payout=commission,
                            metrics={"sales_amount": commission / 0.02}),
        ],
    )


@pytest.fixture
def calculated_results() -> list[CalculationResult]:
    """
    Four calculated entities in two stores:
    - 1001 (store 12): 500 + 1000 = 1500
    - 1002 (store 12): 1000 + 2200 = 3200
    - 1003 (store 14): 0 + 800 = 800
    - 1004 (store 14): 0 + 600 = 600
    """
    return [
        _result("1001", "Ana Lopez", "12", 500, 1000),
        _result("1002", "Luis Perez", "12", 1000, 2200),
        _result("1003", "Marta Ruiz", "14", 0, 800),
        _result("1004", "Pedro Gil", "14", 0, 600),
    ]


@pytest.fixture
def benchmark_rows() -> list[dict]:
    """
    Benchmark payouts against calculated_results:
    - 001001: same total, both components off (false green)
    - 1002: total and commission within tolerance
    - 1003: total 25% above (red mismatch, commission red)
    - 1009: not calculated (file only)
    - 1004 is missing (calculated only)
    """
    return [
        {"Employee": "001001", "Total": 1500, "Bonus": 800, "Commission": 700},
        {"Employee": "1002", "Total": "3,300", "Bonus": 1000, "Commission": 2300},
        {"Employee": 1003.0, "Total": 1000, "Bonus": 0, "Commission": 1000},
        {"Employee": "1009", "Total": 250, "Bonus": 250, "Commission": 0},
    ]


@pytest.fixture
def benchmark_mappings() -> list[ColumnMapping]:
    return [
        ColumnMapping(source_column="Employee", mapped_to="entity_id"),
        ColumnMapping(source_column="Total", mapped_to="total"),
        ColumnMapping(source_column="Bonus", mapped_to="component:sales-bonus", mapped_to_label="Sales bonus"),
        ColumnMapping(source_column="Commission", mapped_to="component:commission"),
    ]


# =======================
# CONFIGURATION FIXTURES
# =======================

@pytest.fixture(scope="session")
def test_env_vars():
    """
    Set test environment variables

    This fixture loads test.env and sets environment variables
    """
    from dotenv import load_dotenv

    env_path = os.path.join(
        os.path.dirname(os.path.dirname(__file__)),
        "config",
        "test.env"
    )

    if os.path.exists(env_path):
        load_dotenv(env_path, override=True)
