"""
Unit tests for per-sync log capture (repokeeper/mirror/synclog.py).
"""

import logging

from freezegun import freeze_time

from repokeeper.mirror.synclog import SyncLog


class TestSyncLog:

    @freeze_time('2026-01-02 03:04:05')
    def test_lines_are_timestamped_with_context(self):
        log = SyncLog(path='/backup', repo='foo')

        log.info('cloning foo')

        assert log.lines == ['[2026-01-02 03:04:05 UTC] INFO cloning foo [stage=locally path=/backup repo=foo]']

    def test_debug_is_not_captured(self):
        log = SyncLog()

        log.debug('details')
        log.warning('retry 1 from 5')

        assert len(log.lines) == 1
        assert 'WARNING retry 1 from 5' in log.text()

    def test_bind_and_per_call_fields(self):
        log = SyncLog(repo='foo')
        log.bind(stage='retention')

        log.error('failed', attempt=3)

        assert log.lines[0].endswith('failed [stage=retention repo=foo attempt=3]')

    def test_empty_fields_are_omitted(self):
        log = SyncLog(path='', repo=None)

        log.info('hello')

        assert log.lines[0].endswith('hello [stage=locally]')

    def test_lines_reach_the_logger(self, caplog):
        log = SyncLog(repo='foo')

        with caplog.at_level(logging.INFO, logger='repokeeper.mirror'):
            log.info('pulling foo')

        assert 'pulling foo [stage=locally repo=foo]' in caplog.text
