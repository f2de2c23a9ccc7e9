import asyncio
import re
import tempfile
import threading
import unittest

from data_collection import DataCollection, Query
from data_collection.exceptions import InvalidOperandKindException, LoaderFailureException, \
    ValidationException
from data_collection.tests.sample_data import make_movies, write_dataset


class QueryTestCase(unittest.IsolatedAsyncioTestCase):
    """
    Runs queries end to end against a worker thread holding 20 movies.
    """

    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.movies = make_movies(20)
        self.path = write_dataset(self._tmp.name, self.movies)
        self.collection = DataCollection(resource_location=self.path, worker_mode='thread', timeout_ms=2000)
        await self.collection.open()

    async def asyncTearDown(self):
        self.collection.close()
        self._tmp.cleanup()

    def ids(self, records):
        return [r['id'] for r in records]


class TestInitialization(QueryTestCase):
    async def test_initialized(self):
        self.assertTrue(self.collection.is_initialized)
        self.assertEqual(self.collection.size, 20)
        self.assertEqual(self.collection.timeout, 2000)

    async def test_on_init_after_initialization(self):
        sizes = []
        self.collection.on_init(sizes.append)
        self.assertEqual(sizes, [20])

    async def test_on_init_before_initialization(self):
        collection = DataCollection(resource_location=self.path, worker_mode='thread')
        sizes = []
        collection.on_init(sizes.append)
        self.assertEqual(sizes, [])
        try:
            await collection.wait_for_initialization()
            self.assertEqual(sizes, [20])
        finally:
            collection.close()

    async def test_loader_failure_fails_every_query(self):
        collection = DataCollection(resource_location=self.path + '.missing', worker_mode='thread')
        try:
            with self.assertRaises(LoaderFailureException):
                await collection.all().result()
            with self.assertRaises(LoaderFailureException):
                await collection.equals('genre', 'drama').result()
            self.assertFalse(collection.is_initialized)
        finally:
            collection.close()

    async def test_async_context_manager(self):
        async with DataCollection(resource_location=self.path, worker_mode='thread') as collection:
            self.assertEqual(len(await collection.all().result()), 20)
        self.assertFalse(collection.channel.running)

    async def test_worker_start_and_stop_run_off_the_event_loop(self):
        loop_thread = threading.get_ident()
        collection = DataCollection(resource_location=self.path, worker_mode='thread')
        threads = {}

        def recording(name, fn):
            def wrapper():
                threads[name] = threading.get_ident()
                fn()
            return wrapper

        collection.channel.start = recording('start', collection.channel.start)
        collection.channel.close = recording('close', collection.channel.close)
        async with collection:
            self.assertEqual(collection.size, 20)
        self.assertNotEqual(threads['start'], loop_thread)
        self.assertNotEqual(threads['close'], loop_thread)
        self.assertFalse(collection.channel.running)


class TestFilters(QueryTestCase):
    async def test_empty_pipeline_returns_dataset(self):
        self.assertEqual(await self.collection.query().result(), self.movies)

    async def test_between(self):
        res = await self.collection.between('year', 1995, 1999).result()
        self.assertEqual(self.ids(res), [5, 6, 7, 8, 9])

    async def test_between_superset_of_equals(self):
        between = await self.collection.between('rating', 3, 3).result()
        equal = await self.collection.equals('rating', 3).result()
        self.assertEqual(between, equal)

    async def test_equals_ignores_case(self):
        res = await self.collection.equals('genre', 'DRAMA').result()
        self.assertEqual(self.ids(res), [0, 4, 8, 12, 16])
        res = await self.collection.equals('genre', 'DRAMA', ignore_case=False).result()
        self.assertEqual(res, [])

    async def test_matching(self):
        res = await self.collection.matching('title', r'movie 1[0-2]').result()
        self.assertEqual(self.ids(res), [10, 11, 12])
        res = await self.collection.matching('title', re.compile('MOVIE 0[12]', re.IGNORECASE)).result()
        self.assertEqual(self.ids(res), [1, 2])

    async def test_chained_filters(self):
        res = await self.collection.between('year', 1990, 2000).equals('genre', 'comedy').result()
        self.assertEqual(self.ids(res), [1, 5, 9])

    async def test_range(self):
        res = await self.collection.query().range(5, 10).result()
        self.assertEqual(self.ids(res), [5, 6, 7, 8, 9])

    async def test_with_key(self):
        self.assertEqual((await self.collection.with_key(7).result())['title'], 'movie 07')
        self.assertIsNone(await self.collection.with_key(99).result())
        first = await self.collection.with_key('comedy', 'genre').result()
        self.assertEqual(first['id'], 1)


class TestOrderingAndAggregates(QueryTestCase):
    async def test_all_sorted(self):
        res = await self.collection.all(['-rating', '+id']).result()
        self.assertEqual(self.ids(res[:4]), [4, 9, 14, 19])

    async def test_sort_single_attribute_string(self):
        res = await self.collection.all('-year').range(0, 3).result()
        self.assertEqual(self.ids(res), [19, 18, 17])

    async def test_sort_leaves_dataset_order(self):
        await self.collection.all('-id').result()
        self.assertEqual(self.ids(await self.collection.query().result()), list(range(20)))

    async def test_sum_and_avg(self):
        total = sum(m['rating'] for m in self.movies)
        self.assertEqual(await self.collection.query().sum('rating').result(), total)
        self.assertEqual(await self.collection.query().avg('rating').result(), total / 20)

    async def test_mean_is_avg(self):
        avg = await self.collection.query().avg('year').result()
        mean = await self.collection.query().mean('year').result()
        self.assertEqual(avg, mean)


class TestGrouping(QueryTestCase):
    async def test_group_by(self):
        groups = await self.collection.group_by('genre').result()
        self.assertEqual(list(groups), ['drama', 'comedy', 'action', 'horror'])
        self.assertEqual(self.ids(groups['action']), [2, 6, 10, 14, 18])

    async def test_group_then_sum(self):
        sums = await self.collection.group_by('genre').sum('rating').result()
        self.assertEqual(set(sums), {m['genre'] for m in self.movies})
        for genre, total in sums.items():
            self.assertEqual(total, sum(m['rating'] for m in self.movies if m['genre'] == genre))

    async def test_group_then_avg(self):
        avgs = await self.collection.group_by('genre').avg('year').result()
        self.assertEqual(avgs['drama'], (1990 + 1994 + 1998 + 2002 + 2006) / 5)

    async def test_group_then_sort_and_range(self):
        res = await self.collection.group_by('genre').sort_by('-year').range(0, 2).result()
        self.assertEqual(self.ids(res['drama']), [16, 12])
        self.assertEqual(self.ids(res['horror']), [19, 15])

    async def test_filter_after_group_is_rejected(self):
        query = self.collection.group_by('genre').equals('title', 'movie 01')
        with self.assertRaises(InvalidOperandKindException) as ctx:
            await query.result()
        self.assertEqual(ctx.exception.operation, 'equals')

    async def test_aggregate_mid_chain_is_rejected(self):
        query = self.collection.query().sum('rating').between('year', 1990, 1995)
        with self.assertRaises(InvalidOperandKindException) as ctx:
            await query.result()
        self.assertEqual(ctx.exception.operation, 'between')

    async def test_range_after_aggregate_is_rejected(self):
        query = self.collection.group_by('genre').sum('rating').range(0, 1)
        with self.assertRaises(InvalidOperandKindException) as ctx:
            await query.result()
        self.assertEqual(ctx.exception.operation, 'range')

    async def test_single_record_is_not_a_partition_map(self):
        with self.assertRaises(InvalidOperandKindException) as ctx:
            await self.collection.with_key(3).range(0, 1).result()
        self.assertEqual(ctx.exception.operation, 'range')
        with self.assertRaises(InvalidOperandKindException) as ctx:
            await self.collection.with_key(3).sum('rating').result()
        self.assertEqual(ctx.exception.operation, 'sum')

    async def test_record_with_list_attributes_is_not_a_partition_map(self):
        record = {'tags': ['a', 'b', 'c'], 'cast': ['x', 'y']}
        query = self.collection.with_key(99).fallback_if_empty(record).range(0, 1)
        with self.assertRaises(InvalidOperandKindException) as ctx:
            await query.result()
        self.assertEqual(ctx.exception.operation, 'range')
        with self.assertRaises(InvalidOperandKindException):
            await self.collection.with_key(99).fallback_if_empty({}).sort_by('id').result()

    async def test_group_fallback_keeps_partitions(self):
        groups = {'none': [{'id': 2}, {'id': 1}]}
        res = await self.collection.equals('genre', 'western').group_by('genre') \
            .fallback_if_empty(groups).sort_by('id').result()
        self.assertEqual(res, {'none': [{'id': 1}, {'id': 2}]})

    async def test_grouped_query_cannot_be_combined(self):
        query = self.collection.between('id', 0, 4).or_(self.collection.group_by('genre'))
        with self.assertRaises(InvalidOperandKindException) as ctx:
            await query.result()
        self.assertEqual(ctx.exception.operation, 'or')


class TestSetAlgebra(QueryTestCase):
    async def test_or_disjoint(self):
        a = self.collection.between('id', 0, 4)
        b = self.collection.between('id', 10, 12)
        res = await a.or_(b).result()
        self.assertEqual(self.ids(res), [0, 1, 2, 3, 4, 10, 11, 12])

    async def test_and_sharing_one_id(self):
        a = self.collection.between('id', 0, 4)
        b = self.collection.between('id', 4, 8)
        res = await a.and_(b).result()
        self.assertEqual(self.ids(res), [4])

    async def test_or_custom_attribute(self):
        a = self.collection.equals('genre', 'drama')
        b = self.collection.between('id', 0, 3)
        res = await a.or_(b, attr='genre').result()
        self.assertEqual(self.ids(res), [0, 4, 8, 12, 16, 1, 2, 3])

    async def test_invert(self):
        res = await self.collection.between('id', 2, 17).invert().result()
        self.assertEqual(self.ids(res), [0, 1, 18, 19])

    async def test_nested_query_must_return_collection(self):
        query = self.collection.between('id', 0, 4).or_(self.collection.query().sum('rating'))
        with self.assertRaises(InvalidOperandKindException):
            await query.result()

    def test_or_requires_query(self):
        with self.assertRaises(ValidationException):
            self.collection.query().or_([{'id': 1}])


class TestPipeline(QueryTestCase):
    async def test_builder_returns_same_instance(self):
        query = self.collection.query()
        self.assertIs(query.between('year', 1, 2), query)
        self.assertIs(query.range(0, 1), query)
        self.assertEqual(query.explain(), 'between -> range')
        self.assertIsInstance(query, Query)

    async def test_result_is_replayed(self):
        query = self.collection.between('year', 1990, 1999).all('-id').range(0, 3)
        first = await query.result()
        second = await query.result()
        self.assertEqual(first, second)
        self.assertEqual(self.ids(first), [9, 8, 7])

    async def test_fallback_if_empty(self):
        fallback = [{'id': -1}]
        res = await self.collection.equals('genre', 'western').fallback_if_empty(fallback).result()
        self.assertEqual(res, fallback)
        res = await self.collection.with_key(99).fallback_if_empty(None).result()
        self.assertIsNone(res)
        res = await self.collection.equals('genre', 'drama').fallback_if_empty(fallback).result()
        self.assertEqual(len(res), 5)

    async def test_concurrent_queries(self):
        queries = [self.collection.between('id', i, i + 1) for i in range(10)]
        results = await asyncio.gather(*(q.result() for q in queries))
        for i, res in enumerate(results):
            self.assertEqual(self.ids(res), [i, i + 1])

    async def test_results_do_not_alias_worker_data(self):
        res = await self.collection.with_key(3).result()
        res['title'] = 'changed'
        self.assertEqual((await self.collection.with_key(3).result())['title'], 'movie 03')


if __name__ == '__main__':
    unittest.main()
