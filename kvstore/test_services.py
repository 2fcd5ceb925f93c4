import threading
import uuid
from unittest import skipUnless

from django.db import connection, connections, transaction
from django.test import TestCase, TransactionTestCase

from kvstore.exceptions import NoSuchKey, VersionConflict, VersionMismatch
from kvstore.models import ValueEntry
from kvstore.services import put_value, read_value, read_value_version


class PutValueTests(TestCase):
    def setUp(self):
        self.token = uuid.uuid4()

    def test_create_yields_version_one(self):
        self.assertEqual(put_value(self.token, "alpha", b"first", 0), 1)

        with self.assertRaises(VersionConflict):
            put_value(self.token, "alpha", b"second", 0)

        self.assertEqual(read_value(self.token, "alpha"), (b"first", 1))

    def test_versions_increase_by_one(self):
        version = 0
        for index in range(5):
            new_version = put_value(self.token, "counter", f"{index}".encode(), version)
            self.assertEqual(new_version, version + 1)
            version = new_version

        self.assertEqual(read_value(self.token, "counter"), (b"4", 5))

    def test_missing_key_with_nonzero_version_conflicts(self):
        with self.assertRaises(VersionConflict):
            put_value(self.token, "missing", b"value", 1)

        self.assertFalse(ValueEntry.objects.filter(token=self.token, key="missing").exists())

    def test_stale_writer_loses(self):
        put_value(self.token, "alpha", b"base", 0)

        # both writers observed version 1
        self.assertEqual(put_value(self.token, "alpha", b"writer a", 1), 2)
        with self.assertRaises(VersionConflict):
            put_value(self.token, "alpha", b"writer b", 1)

        self.assertEqual(read_value(self.token, "alpha"), (b"writer a", 2))

    def test_write_replaces_row_in_place(self):
        put_value(self.token, "alpha", b"one", 0)
        first_written = ValueEntry.objects.get(token=self.token, key="alpha").created_at
        put_value(self.token, "alpha", b"two", 1)

        entries = ValueEntry.objects.filter(token=self.token, key="alpha")
        self.assertEqual(entries.count(), 1)
        self.assertGreaterEqual(entries.get().created_at, first_written)

    def test_failed_create_keeps_enclosing_transaction_usable(self):
        put_value(self.token, "alpha", b"one", 0)

        with transaction.atomic():
            with self.assertRaises(VersionConflict):
                put_value(self.token, "alpha", b"two", 0)
            self.assertEqual(put_value(self.token, "beta", b"other", 0), 1)

        self.assertEqual(read_value(self.token, "beta"), (b"other", 1))

    def test_tenants_are_isolated(self):
        other = uuid.uuid4()
        put_value(self.token, "shared", b"mine", 0)
        self.assertEqual(put_value(other, "shared", b"theirs", 0), 1)

        self.assertEqual(read_value(self.token, "shared"), (b"mine", 1))
        self.assertEqual(read_value(other, "shared"), (b"theirs", 1))

    def test_empty_payload_is_stored(self):
        put_value(self.token, "empty", b"", 0)
        self.assertEqual(read_value(self.token, "empty"), (b"", 1))


class ReadValueTests(TestCase):
    def setUp(self):
        self.token = uuid.uuid4()

    def test_missing_key_raises(self):
        with self.assertRaises(NoSuchKey):
            read_value(self.token, "missing")

        with self.assertRaises(NoSuchKey):
            read_value_version(self.token, "missing", 1)

    def test_read_after_write(self):
        put_value(self.token, "alpha", b"one", 0)
        version = put_value(self.token, "alpha", b"\x00two", 1)

        self.assertEqual(read_value(self.token, "alpha"), (b"\x00two", version))
        self.assertEqual(read_value_version(self.token, "alpha", version), b"\x00two")

    def test_superseded_version_is_unrecoverable(self):
        put_value(self.token, "alpha", b"one", 0)
        put_value(self.token, "alpha", b"two", 1)

        with self.assertRaises(VersionMismatch):
            read_value_version(self.token, "alpha", 1)

    def test_future_version_is_a_mismatch(self):
        put_value(self.token, "alpha", b"one", 0)

        with self.assertRaises(VersionMismatch):
            read_value_version(self.token, "alpha", 2)


@skipUnless(connection.vendor == "postgresql", "needs concurrent writers on a database server")
class ConcurrentPutTests(TransactionTestCase):
    def _race(self, token, key, expected_version, writers):
        barrier = threading.Barrier(len(writers))
        results = {}

        def write(name):
            try:
                barrier.wait()
                results[name] = put_value(token, key, name.encode(), expected_version)
            except VersionConflict as exc:
                results[name] = exc
            finally:
                connections.close_all()

        threads = [threading.Thread(target=write, args=(name,)) for name in writers]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        return results

    def test_exactly_one_racing_update_wins(self):
        token = uuid.uuid4()
        put_value(token, "race", b"base", 0)

        results = self._race(token, "race", 1, ["a", "b", "c", "d"])

        winners = [name for name, result in results.items() if result == 2]
        losers = [name for name, result in results.items() if isinstance(result, VersionConflict)]
        self.assertEqual(len(winners), 1)
        self.assertEqual(len(losers), 3)
        self.assertEqual(read_value(token, "race"), (winners[0].encode(), 2))

    def test_exactly_one_racing_create_wins(self):
        token = uuid.uuid4()

        results = self._race(token, "fresh", 0, ["a", "b", "c", "d"])

        winners = [name for name, result in results.items() if result == 1]
        self.assertEqual(len(winners), 1)
        self.assertEqual(read_value(token, "fresh"), (winners[0].encode(), 1))
