from datetime import datetime, timedelta

from core.quota import CAP_REACHED, COOLDOWN_ACTIVE, QuotaController

NOW = datetime(2026, 10, 19, 12, 0)


def test_reservations_count_against_the_cap():
    quota = QuotaController(daily_cap=2)

    assert quota.acquire(NOW) is None
    assert quota.acquire(NOW) is None
    # Two in flight, nothing sent yet: the third must still be refused
    assert quota.acquire(NOW) == CAP_REACHED


def test_commit_and_release():
    quota = QuotaController(daily_cap=2)
    quota.acquire(NOW)
    quota.acquire(NOW)

    quota.commit_sent()
    quota.release()

    assert quota.sent_today == 1
    assert quota.reserved == 0
    assert quota.acquire(NOW) is None


def test_cap_reached_after_resume():
    quota = QuotaController(daily_cap=8)
    quota.reset(sent_today=8)

    assert quota.acquire(NOW) == CAP_REACHED


def test_cooldown_lasts_ten_minutes():
    quota = QuotaController(daily_cap=8, cooldown_minutes=10)
    quota.trigger_cooldown(NOW)

    assert quota.acquire(NOW + timedelta(minutes=9, seconds=59)) == COOLDOWN_ACTIVE
    assert quota.cooldown_active(NOW + timedelta(minutes=5))
    assert not quota.cooldown_active(NOW + timedelta(minutes=10))
    assert quota.acquire(NOW + timedelta(minutes=10)) is None


def test_cooldown_never_shortened_by_older_failure():
    quota = QuotaController(cooldown_minutes=10)
    quota.trigger_cooldown(NOW)
    quota.trigger_cooldown(NOW - timedelta(minutes=5))

    assert quota.cooldown_until == NOW + timedelta(minutes=10)


def test_reset_clears_counts_but_keeps_cooldown():
    quota = QuotaController()
    quota.acquire(NOW)
    quota.commit_sent()
    quota.trigger_cooldown(NOW)

    quota.reset()

    assert quota.sent_today == 0
    assert quota.reserved == 0
    assert quota.cooldown_active(NOW)
