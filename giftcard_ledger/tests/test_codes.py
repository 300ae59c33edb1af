import random
import re
from decimal import Decimal

from giftcard_ledger.codes import CodeGenerator
from giftcard_ledger.models import NewGiftCard


class TestCodeGenerator:
    """Tests for code format and collision retries."""

    def test_format(self):
        generator = CodeGenerator(lambda code: False, prefix="gc-", length=16)

        code = generator.generate()

        assert re.fullmatch(r"GC-[A-Z0-9]{16}", code)

    def test_retries_until_free_code(self, monkeypatch):
        draws = iter(["GC-TAKEN1", "GC-TAKEN2", "GC-FREE"])
        taken = {"GC-TAKEN1", "GC-TAKEN2"}
        checked = []

        def exists(code):
            checked.append(code)
            return code in taken

        generator = CodeGenerator(exists)
        monkeypatch.setattr(generator, "_draw", lambda: next(draws))

        assert generator.generate() == "GC-FREE"
        assert checked == ["GC-TAKEN1", "GC-TAKEN2", "GC-FREE"]

    def test_returns_last_candidate_after_max_attempts(self, monkeypatch):
        draws = iter([f"GC-TAKEN{i}" for i in range(10)])
        checked = []

        def exists(code):
            checked.append(code)
            return True

        generator = CodeGenerator(exists, max_attempts=5)
        monkeypatch.setattr(generator, "_draw", lambda: next(draws))

        assert generator.generate() == "GC-TAKEN4"
        assert len(checked) == 5

    def test_never_reuses_seeded_codes(self, store, monkeypatch):
        rng = random.Random(1234)
        existing = []
        for i in range(8):
            code = f"GC-SEED{i:02d}"
            store.create(NewGiftCard(
                code=code, initial_amount=Decimal("5"), currency="EUR", source_order_id=f"seed-{i}",
            ))
            existing.append(code)
        store.cancel(existing[0])
        store.debit(existing[1], Decimal("5"))

        checks = []

        def exists(code):
            checks.append(code)
            return store.exists(code)

        fresh = (f"GC-FRESH{i:04d}" for i in range(10_000))
        pending_draws = []

        def draw():
            # up to four collisions with known codes, then an unused one
            if not pending_draws:
                pending_draws.extend(rng.choice(existing) for _ in range(rng.randint(0, 4)))
                pending_draws.append(next(fresh))
            return pending_draws.pop(0)

        generator = CodeGenerator(exists, max_attempts=5)
        monkeypatch.setattr(generator, "_draw", draw)

        for i in range(50):
            code = generator.generate()
            assert code not in existing
            store.create(NewGiftCard(
                code=code, initial_amount=Decimal("5"), currency="EUR", source_order_id=f"order-{i}",
            ))
            existing.append(code)

        assert len(set(existing)) == len(existing)
        assert len(checks) > 50
