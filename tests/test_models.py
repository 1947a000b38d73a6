import pytest
import pytest_asyncio

from errors import ValidationError
from models import DatabaseQueue

PUB_DATE = "2026-01-13T18:33:16.000Z"


def _item(feed_id, guid="g-1", **overrides):
    item = {
        'feed_id': feed_id,
        'guid': guid,
        'title': f"Title {guid}",
        'link': f"https://example.com/{guid}",
        'description': "First description",
        'image_url': None,
        'pub_date': PUB_DATE,
    }
    item.update(overrides)
    return item


@pytest_asyncio.fixture
async def db(tmp_path):
    queue = DatabaseQueue(str(tmp_path / "test.db"))
    await queue.start()
    try:
        yield queue
    finally:
        await queue.stop()


@pytest_asyncio.fixture
async def feed_id(db):
    return await db.execute('create_feed', title='Example', url='https://example.com/feed.xml')


@pytest.mark.asyncio
async def test_create_and_read_feed(db, feed_id):
    feed = await db.execute('get_feed', feed_id=feed_id)
    assert feed['title'] == 'Example'
    assert feed['color'] == '#3b82f6'
    assert feed['fetch_content'] is False
    assert (await db.execute('get_feed_by_url', url='https://example.com/feed.xml'))['id'] == feed_id
    assert [f['id'] for f in await db.execute('list_feeds')] == [feed_id]


@pytest.mark.asyncio
async def test_duplicate_feed_url_raises_validation_error(db, feed_id):
    with pytest.raises(ValidationError, match="already exists"):
        await db.execute('create_feed', title='Again', url='https://example.com/feed.xml')


@pytest.mark.asyncio
async def test_update_feed_fields(db, feed_id):
    assert await db.execute('update_feed', feed_id=feed_id, title='Renamed', fetch_content=True)
    feed = await db.execute('get_feed', feed_id=feed_id)
    assert feed['title'] == 'Renamed'
    assert feed['fetch_content'] is True

    with pytest.raises(ValidationError):
        await db.execute('update_feed', feed_id=feed_id, slug='nope')


@pytest.mark.asyncio
async def test_upsert_reports_only_real_changes(db, feed_id):
    assert await db.execute('upsert_item', **_item(feed_id)) is True
    assert await db.execute('upsert_item', **_item(feed_id)) is False

    assert await db.execute('upsert_item', **_item(feed_id, description="Second description")) is True
    assert await db.execute('count_items') == 1
    items = await db.execute('list_items', feed_id=feed_id)
    assert items[0]['description'] == "Second description"


@pytest.mark.asyncio
async def test_upsert_can_keep_stored_date(db, feed_id):
    await db.execute('upsert_item', **_item(feed_id))
    changed = await db.execute(
        'upsert_item', **_item(feed_id, pub_date="2026-02-01T00:00:00.000Z"), keep_existing_date=True
    )
    assert changed is False
    row = await db.execute('list_items', feed_id=feed_id)
    assert row[0]['pub_date'] == PUB_DATE


@pytest.mark.asyncio
async def test_natural_key_lookup_and_full_content(db, feed_id):
    await db.execute('upsert_item', **_item(feed_id))
    row = await db.execute('get_item_by_guid', feed_id=feed_id, guid='g-1')
    assert row['link'] == "https://example.com/g-1"
    assert row['full_content'] is None

    assert await db.execute('update_full_content', item_id=row['id'], content="<p>Full</p>", ttr=90)
    row = await db.execute('get_item_by_guid', feed_id=feed_id, guid='g-1')
    assert row['full_content'] == "<p>Full</p>"
    assert row['ttr'] == 90
    assert await db.execute('get_item_by_guid', feed_id=feed_id, guid='missing') is None


@pytest.mark.asyncio
async def test_titles_are_global(db, feed_id):
    other = await db.execute('create_feed', title='Other', url='https://other.example.com/rss')
    await db.execute('upsert_item', **_item(feed_id, 'a'))
    await db.execute('upsert_item', **_item(other, 'b'))
    assert await db.execute('get_all_titles') == {"Title a", "Title b"}


@pytest.mark.asyncio
async def test_read_state(db, feed_id):
    for guid in ('a', 'b', 'c'):
        await db.execute('upsert_item', **_item(feed_id, guid))
    ids = [row['id'] for row in await db.execute('list_items')]

    assert await db.execute('mark_read', item_id=ids[0])
    assert (await db.execute('unread_counts'))['total'] == 2

    assert await db.execute('bulk_mark_read', item_ids=ids) == 3
    assert await db.execute('unread_counts') == {'total': 0, 'by_feed': {}, 'by_folder': {}}

    assert await db.execute('mark_unread', item_id=ids[1])
    unread = await db.execute('list_items', unread_only=True)
    assert [row['id'] for row in unread] == [ids[1]]
    assert await db.execute('mark_read', item_id=9999) is False


@pytest.mark.asyncio
async def test_unread_counts_by_folder(db, feed_id):
    tech = await db.execute('create_folder', label='Tech')
    other = await db.execute('create_feed', title='Other', url='https://other.example.com/rss',
                             folder_id=tech)
    await db.execute('upsert_item', **_item(feed_id, 'a'))
    await db.execute('upsert_item', **_item(other, 'b'))
    await db.execute('upsert_item', **_item(other, 'c'))

    counts = await db.execute('unread_counts')
    assert counts['total'] == 3
    assert counts['by_feed'] == {feed_id: 1, other: 2}
    assert counts['by_folder'] == {None: 1, tech: 2}


@pytest.mark.asyncio
async def test_search_and_limit(db, feed_id):
    await db.execute('upsert_item', **_item(feed_id, 'a', description="about python"))
    await db.execute('upsert_item', **_item(feed_id, 'b', description="about rust",
                                           pub_date="2026-01-14T00:00:00.000Z"))
    found = await db.execute('list_items', search='python')
    assert [row['guid'] for row in found] == ['a']
    newest = await db.execute('list_items', limit=1)
    assert [row['guid'] for row in newest] == ['b']
    assert newest[0]['feed_title'] == 'Example'


@pytest.mark.asyncio
async def test_delete_older_than(db, feed_id):
    await db.execute('upsert_item', **_item(feed_id, 'old', pub_date="2025-01-01T00:00:00.000Z"))
    await db.execute('upsert_item', **_item(feed_id, 'new'))
    assert await db.execute('delete_older_than', cutoff="2026-01-01T00:00:00.000Z") == 1
    assert [row['guid'] for row in await db.execute('list_items')] == ['new']


@pytest.mark.asyncio
async def test_deleting_feed_cascades_to_items(db, feed_id):
    await db.execute('upsert_item', **_item(feed_id))
    assert await db.execute('delete_feed', feed_id=feed_id)
    assert await db.execute('count_items') == 0


@pytest.mark.asyncio
async def test_filter_keywords(db):
    await db.execute('add_filter_keyword', keyword="  Sponsored ")
    assert await db.execute('get_filter_keywords') == ["sponsored"]

    with pytest.raises(ValidationError, match="already exists"):
        await db.execute('add_filter_keyword', keyword="SPONSORED")
    with pytest.raises(ValidationError):
        await db.execute('add_filter_keyword', keyword="   ")

    keyword_id = (await db.execute('list_filter_keywords'))[0]['id']
    assert await db.execute('delete_filter_keyword', keyword_id=keyword_id)
    assert await db.execute('get_filter_keywords') == []


@pytest.mark.asyncio
async def test_default_folder_adopts_orphans(db, feed_id):
    folder_id = await db.execute('ensure_default_folder')
    assert (await db.execute('get_feed', feed_id=feed_id))['folder_id'] == folder_id
    assert await db.execute('ensure_default_folder') == folder_id

    tech = await db.execute('create_folder', label='Tech')
    await db.execute('update_feed', feed_id=feed_id, folder_id=tech)
    assert await db.execute('update_folder', folder_id=tech, label='Technology')
    assert await db.execute('get_folder_by_label', label='Technology')

    assert await db.execute('delete_folder', folder_id=tech)
    assert (await db.execute('get_feed', feed_id=feed_id))['folder_id'] is None
    assert {f['label'] for f in await db.execute('list_folders')} == {'Default'}


@pytest.mark.asyncio
async def test_unknown_operation(db):
    with pytest.raises(AttributeError):
        await db.execute('drop_everything')
    with pytest.raises(AttributeError):
        await db.execute('_worker')


@pytest.mark.asyncio
async def test_migration_adds_content_columns(tmp_path):
    import sqlite3

    path = tmp_path / "legacy.db"
    conn = sqlite3.connect(path)
    conn.executescript("""
        CREATE TABLE folders (id INTEGER PRIMARY KEY, label TEXT UNIQUE, icon TEXT, is_default INTEGER DEFAULT 0);
        CREATE TABLE feeds (id INTEGER PRIMARY KEY, title TEXT, url TEXT UNIQUE, icon_url TEXT,
                            color TEXT, fetch_content INTEGER DEFAULT 0, folder_id INTEGER);
        CREATE TABLE items (id INTEGER PRIMARY KEY, feed_id INTEGER, guid TEXT, title TEXT, link TEXT,
                            description TEXT, image_url TEXT, pub_date TEXT, read_at TEXT,
                            UNIQUE(feed_id, guid));
    """)
    conn.close()

    db = DatabaseQueue(str(path))
    await db.start()
    try:
        columns = {row[1] for row in db.conn.execute("PRAGMA table_info(items)").fetchall()}
        assert {'full_content', 'ttr'} <= columns
        assert await db.execute('get_filter_keywords') == []
    finally:
        await db.stop()
