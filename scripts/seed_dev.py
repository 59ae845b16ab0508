"""Reset the development database and publish a demo pool.

The demo pool has 10 numbered tickets (A x1, B x2, C x7) plus a Last One
prize. Its commitment is printed; the seed stays in the database until the
pool is revealed.
"""

from sqlalchemy.orm import sessionmaker

from kujibox.config import configure_logging
from kujibox.db.engine import make_engine
from kujibox.draw.pool import TierSpec, create_pool
from kujibox.draw.rates import set_profit_rate
from kujibox.models import Base

DEMO_TIERS = [
    TierSpec(level="A", name="Figure (1/7 scale)", total=1, probability=0.1),
    TierSpec(level="B", name="Acrylic stand", total=2, probability=0.2),
    TierSpec(level="C", name="Rubber strap", total=7, probability=0.7),
    TierSpec(level="Last One", name="Special colour figure", total=1),
]


def main() -> None:
    """Seed the development database with a sample pool."""
    configure_logging()
    engine = make_engine()

    # SQLite refuses to drop tables with live foreign keys; disable the
    # check for the reset.
    with engine.connect() as conn:
        if conn.dialect.name == "sqlite":
            conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
        Base.metadata.drop_all(bind=conn)
        if conn.dialect.name == "sqlite":
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")
        conn.commit()

    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, expire_on_commit=False)

    with Session.begin() as session:
        product = create_pool(session, name="Demo Kuji", tiers=DEMO_TIERS)
        set_profit_rate(session, product.id, 1.0, updated_by="seed_dev")

    print(f"Development database seeded: product {product.id}, commitment {product.commitment_hash}")


if __name__ == "__main__":
    main()
