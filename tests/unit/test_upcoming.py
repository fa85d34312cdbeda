import asyncio

from nextup import crud
from nextup.schemas import CatalogEpisode
from nextup.services.collection import CollectionManager
from nextup.services.upcoming import gather_in_batches, get_upcoming_episodes, refresh_collection

from helpers import build_show, seed_show, seed_user


def test_gather_in_batches_caps_concurrency_and_keeps_order():
    running = 0
    peak = 0

    async def work(item):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1
        if item == 3:
            raise ValueError("bad item")
        return item * 10

    results = asyncio.run(gather_in_batches(range(7), work, 3))

    assert peak == 3
    assert results[:3] == [0, 10, 20]
    assert isinstance(results[3], ValueError)
    assert results[4:] == [40, 50, 60]


def test_batches_do_not_pipeline():
    finished = []

    async def work(item):
        await asyncio.sleep(0.02 if item == 0 else 0)
        finished.append(item)

    asyncio.run(gather_in_batches([0, 1, 2, 3], work, 2))
    # Item 2 starts only after the slow item 0 of the first batch completed
    assert finished.index(0) < finished.index(2)


def _listed(db, trakt_ids):
    user_id, list_id = seed_user(db)
    manager = CollectionManager(db)
    ids = {}
    for trakt_id in trakt_ids:
        ids[trakt_id] = seed_show(db, trakt_id=trakt_id, seasons={1: 1})
        asyncio.run(manager.add_show(user_id, ids[trakt_id]))
    return user_id, list_id, ids


def test_upcoming_sorted_by_air_date(db, catalog):
    user_id, _, _ = _listed(db, [1, 2, 3])
    catalog.next_episodes["1"] = CatalogEpisode.model_validate(
        {"season": 2, "number": 1, "ids": {"trakt": 1}, "first_aired": "2030-05-01T01:00:00.000Z"})
    catalog.next_episodes["3"] = CatalogEpisode.model_validate(
        {"season": 4, "number": 7, "ids": {"trakt": 3}, "first_aired": "2030-01-01T01:00:00.000Z"})

    upcoming = asyncio.run(get_upcoming_episodes(db, user_id, "token", catalog_factory=catalog.factory))

    assert [u["show"]["trakt_id"] for u in upcoming] == [3, 1]
    assert upcoming[0]["episode"]["episode_number"] == 7


def test_refresh_collection_ingests_new_episodes(db, catalog):
    user_id, list_id, ids = _listed(db, [1, 2])
    # Trakt now reports a second season for show 1; show 2 fails
    show, seasons = build_show(1, seasons={1: 1, 2: 2})
    catalog.add_show(show, seasons)
    catalog.fail_seasons_for = {"2"}
    crud.insert_user_episodes(db, user_id, [crud.get_episode_id(db, ids[1], 1, 1)])
    db.commit()

    result = asyncio.run(refresh_collection(db, user_id, "token", catalog_factory=catalog.factory))

    assert result.succeeded == ["Show 1"]
    assert [item for item, _ in result.failed] == ["Show 2"]
    row = crud.get_list_show(db, list_id, ids[1])
    assert (row.watched_episodes, row.total_episodes) == (1, 3)
    assert row.next_episode_id == crud.get_episode_id(db, ids[1], 2, 1)
