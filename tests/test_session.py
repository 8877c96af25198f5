"""
test_session.py - End-to-end uploads against a scripted server
"""

import asyncio
import hashlib

import pytest

from pan_uploader.exceptions import (
    ChunkTransferError, PlanningError, PollTimeoutError, ReadError, TaskCreationError,
    UploadError,
)
from pan_uploader.file.chunker import ChunkStatus
from pan_uploader.session import SessionStatus, UploadResult, UploadSession
from tests.fakes import MB, FakePanServer, Recorder, pattern

TERMINAL = ('completed', 'error', 'cancel')


def terminal_events(recorder):
    return [name for name in recorder.names() if name in TERMINAL]


async def until(condition, timeout: float = 5.0):
    async def poll():
        while not condition():
            await asyncio.sleep(0.001)
    await asyncio.wait_for(poll(), timeout)


class TestUpload:

    @pytest.mark.asyncio
    async def test_sliced_upload(self, make_file):
        path = make_file(10 * MB)
        server = FakePanServer(slice_size=4 * MB)
        session = server.session(path, concurrency=2)
        recorder = Recorder(session)

        result = await session.upload()

        assert result == UploadResult('F1', 'payload.bin')
        assert session.status is SessionStatus.COMPLETED
        assert [len(server.parts[n]) for n in (1, 2, 3)] == [4 * MB, 4 * MB, 2 * MB]
        assert server.assembled() == pattern(10 * MB)
        assert server.peak_inflight <= 2
        assert all(task.status is ChunkStatus.COMPLETED for task in session.tasks)
        assert recorder.of('completed') == [result]

    @pytest.mark.asyncio
    async def test_create_payload(self, make_file):
        path = make_file(1000)
        server = FakePanServer(slice_size=400)
        session = server.session(path, duplicate=2)

        await session.upload()

        path_, payload = server.calls[0]
        assert path_ == '/upload/v1/file/create'
        assert payload == {
            'parentFileID': 0,
            'filename': 'payload.bin',
            'size': 1000,
            'etag': hashlib.md5(pattern(1000)).hexdigest(),
            'duplicate': 2,
        }
        assert session.chunk_size == 400
        assert session.preupload_id == 'PRE1'

    @pytest.mark.asyncio
    async def test_reuse_skips_chunk_work(self, make_file):
        path = make_file(5000)
        server = FakePanServer(reuse=True, file_id='F1')
        session = server.session(path)
        recorder = Recorder(session)

        result = await session.upload()

        assert result == UploadResult('F1', 'payload.bin')
        assert server.paths() == ['/upload/v1/file/create']
        assert sum(server.put_requests.values()) == 0
        assert recorder.phases()[-1] == 'complete'
        assert recorder.of('progress')[-1].loaded == 5000

    @pytest.mark.asyncio
    async def test_empty_file_goes_straight_to_finish(self, make_file):
        path = make_file(0)
        server = FakePanServer()
        session = server.session(path)

        result = await session.upload()

        assert result.file_id == 'F1'
        assert server.paths() == ['/upload/v1/file/create', '/upload/v1/file/upload_complete']
        assert session.tasks == []

    @pytest.mark.asyncio
    async def test_retries_failed_chunk(self, make_file):
        path = make_file(1000)
        server = FakePanServer(slice_size=400)
        server.put_failures = {2: 2}
        session = server.session(path, retry_times=3)
        recorder = Recorder(session)

        result = await session.upload()

        assert result.file_id == 'F1'
        failures = [d for d in recorder.of('debug') if d['msg'] == 'chunk upload attempt failed']
        assert [(d['chunk'], d['attempt']) for d in failures] == [(2, 1), (2, 2)]
        assert server.url_requests[2] == 3
        assert server.assembled() == pattern(1000)
        assert terminal_events(recorder) == ['completed']

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_session(self, make_file):
        path = make_file(1000)
        server = FakePanServer(slice_size=400)
        server.put_failures = {1: 5}
        session = server.session(path, retry_times=1, concurrency=1)
        recorder = Recorder(session)

        with pytest.raises(ChunkTransferError):
            await session.upload()

        assert session.status is SessionStatus.ERROR
        assert terminal_events(recorder) == ['error']
        assert isinstance(recorder.of('error')[0], ChunkTransferError)
        assert '/upload/v1/file/upload_complete' not in server.paths()

    @pytest.mark.asyncio
    async def test_create_rejection_keeps_server_reason(self, make_file):
        path = make_file(100)
        server = FakePanServer()
        server.create_error = (5113, 'parent folder does not exist')
        session = server.session(path)
        recorder = Recorder(session)

        with pytest.raises(TaskCreationError, match='parent folder does not exist'):
            await session.upload()

        assert recorder.names()[0] == 'start'
        assert terminal_events(recorder) == ['error']

    @pytest.mark.asyncio
    async def test_event_order_and_final_progress(self, make_file):
        path = make_file(1000)
        server = FakePanServer(slice_size=300)
        session = server.session(path)
        recorder = Recorder(session)

        await session.upload()

        names = recorder.names()
        assert names[0] == 'start'
        assert names[-1] == 'completed'
        assert names.count('start') == 1
        phases = recorder.phases()
        assert phases[:2] == ['init', 'preupload']
        assert 'uploading' in phases
        assert phases[-1] == 'complete'

        loaded = [event.loaded for event in recorder.of('progress')]
        assert loaded == sorted(loaded)
        final = recorder.of('progress')[-1]
        assert final.loaded == final.total == 1000

    @pytest.mark.asyncio
    async def test_uploading_progress_names_chunk(self, make_file):
        path = make_file(1000)
        server = FakePanServer(slice_size=500)
        session = server.session(path)
        recorder = Recorder(session)

        await session.upload()

        uploading = [e for e in recorder.of('progress') if e.phase.value == 'uploading']
        assert {e.extra['chunk'] for e in uploading} == {1, 2}
        assert all(0 < e.extra['chunk_progress'] <= 1 for e in uploading)


    @pytest.mark.asyncio
    async def test_truncated_source_fails_without_retry(self, make_file):
        path = make_file(1000)
        server = FakePanServer(slice_size=400)
        session = server.session(path, retry_times=3, concurrency=1)
        recorder = Recorder(session)
        path.write_bytes(pattern(500))

        with pytest.raises(ReadError):
            await session.upload()

        assert isinstance(recorder.of('error')[0], ReadError)
        assert [d for d in recorder.of('debug') if d['msg'] == 'chunk upload attempt failed'] == []
        assert server.url_requests[2] == 0
        assert session.tasks[1].status is ChunkStatus.ERROR
        assert terminal_events(recorder) == ['error']


class TestMerge:

    @pytest.mark.asyncio
    async def test_async_merge_is_polled(self, make_file):
        path = make_file(1000)
        server = FakePanServer(slice_size=500, async_merge=True, merge_after=2)
        session = server.session(path)
        recorder = Recorder(session)

        result = await session.upload()

        assert result.file_id == 'F1'
        assert server.merge_checks == 3
        assert 'merging' in recorder.phases()
        merged = [d for d in recorder.of('debug') if d['msg'] == 'merge completed']
        assert merged == [{'msg': 'merge completed', 'poll_count': 3}]

    @pytest.mark.asyncio
    async def test_merge_timeout_is_an_error(self, make_file):
        path = make_file(1000)
        server = FakePanServer(slice_size=500, async_merge=True, merge_after=None)
        session = server.session(path, poll_max_times=3)
        recorder = Recorder(session)

        with pytest.raises(PollTimeoutError):
            await session.upload()

        assert server.merge_checks == 3
        assert session.status is SessionStatus.ERROR
        assert isinstance(recorder.of('error')[0], PollTimeoutError)


class TestControl:

    @pytest.mark.asyncio
    async def test_pause_then_resume_completes(self, make_file):
        path = make_file(1000)
        server = FakePanServer(slice_size=300)
        server.gate = asyncio.Event()
        session = server.session(path, concurrency=2)
        recorder = Recorder(session)
        runner = asyncio.ensure_future(session.upload())
        await server.put_started.wait()

        assert session.pause() is True
        assert session.status is SessionStatus.PAUSED
        assert session.resume() is True
        server.gate.set()
        result = await runner

        assert result == UploadResult('F1', 'payload.bin')
        assert server.assembled() == pattern(1000)
        assert terminal_events(recorder) == ['completed']

    @pytest.mark.asyncio
    async def test_paused_session_waits_for_resume(self, make_file):
        path = make_file(1000)
        server = FakePanServer(slice_size=300)
        server.gate = asyncio.Event()
        session = server.session(path, concurrency=2)
        runner = asyncio.ensure_future(session.upload())
        await server.put_started.wait()

        session.pause()
        server.gate.set()
        for _ in range(20):
            await asyncio.sleep(0)

        assert not runner.done()
        assert session.progress.loaded < 1000
        assert any(task.status is ChunkStatus.ABORTED for task in session.tasks)

        session.resume()
        result = await runner

        assert result.file_id == 'F1'
        assert server.assembled() == pattern(1000)

    @pytest.mark.asyncio
    async def test_cancel_during_transfer(self, make_file):
        path = make_file(1000)
        server = FakePanServer(slice_size=300)
        server.gate = asyncio.Event()
        session = server.session(path)
        recorder = Recorder(session)
        runner = asyncio.ensure_future(session.upload())
        await server.put_started.wait()

        assert session.cancel() is True
        assert session.cancel() is False
        result = await runner

        assert result is None
        assert session.status is SessionStatus.CANCEL
        assert recorder.names().count('cancel') == 1
        assert terminal_events(recorder) == ['cancel']
        assert '/upload/v1/file/upload_complete' not in server.paths()

    @pytest.mark.asyncio
    async def test_cancel_during_merge_polling(self, make_file):
        path = make_file(100)
        server = FakePanServer(slice_size=100, async_merge=True, merge_after=None)
        session = server.session(path, poll_max_times=10)
        recorder = Recorder(session)

        def on_progress(event):
            if event.extra.get('poll_count') == 1:
                session.cancel()

        session.on('progress', on_progress)

        assert await session.upload() is None
        assert server.merge_checks == 1
        assert terminal_events(recorder) == ['cancel']

    @pytest.mark.asyncio
    async def test_cancel_before_upload(self, make_file):
        path = make_file(100)
        server = FakePanServer()
        session = server.session(path)

        assert session.cancel() is True
        assert await session.upload() is None
        assert server.calls == []

    @pytest.mark.asyncio
    async def test_transitions_outside_their_state(self, make_file):
        path = make_file(100)
        server = FakePanServer()
        session = server.session(path)

        assert session.pause() is False
        assert session.resume() is False

        await session.upload()

        assert session.pause() is False
        assert session.cancel() is False
        with pytest.raises(UploadError, match='already started'):
            await session.upload()


class TestConstruction:

    def test_missing_file(self, tmp_path):
        with pytest.raises(PlanningError):
            UploadSession(tmp_path / 'nope.bin', 'token-1')

    def test_directory_is_rejected(self, tmp_path):
        with pytest.raises(PlanningError, match='regular file'):
            UploadSession(tmp_path, 'token-1')

    def test_invalid_options(self, make_file):
        with pytest.raises(ValueError):
            FakePanServer().session(make_file(10), concurrency=0)

    def test_custom_remote_name(self, make_file):
        session = UploadSession(make_file(10), 'token-1', filename='renamed.bin')
        assert session.filename == 'renamed.bin'
        assert session.status is SessionStatus.PENDING


class TestTerminalStates:

    @pytest.mark.asyncio
    async def test_cancel_after_last_chunk_stored(self, make_file):
        path = make_file(100)
        server = FakePanServer(slice_size=100)
        session = server.session(path)
        recorder = Recorder(session)
        server.on_stored = lambda part: asyncio.get_running_loop().call_soon(session.cancel)

        assert await session.upload() is None

        assert session.status is SessionStatus.CANCEL
        assert terminal_events(recorder) == ['cancel']

    @pytest.mark.asyncio
    async def test_cancel_from_listener_inside_chunk(self, make_file):
        path = make_file(100)
        server = FakePanServer(slice_size=100)
        session = server.session(path)
        recorder = Recorder(session)

        def on_progress(event):
            if event.extra.get('chunk_progress') == 1.0:
                session.cancel()

        session.on('progress', on_progress)

        assert await session.upload() is None

        assert session.status is SessionStatus.CANCEL
        assert terminal_events(recorder) == ['cancel']
        assert '/upload/v1/file/upload_complete' not in server.paths()

    @pytest.mark.asyncio
    async def test_pause_is_refused_once_chunks_are_stored(self, make_file):
        path = make_file(1000)
        server = FakePanServer(slice_size=500, async_merge=True, merge_after=1)
        session = server.session(path)
        answers = []

        def on_progress(event):
            if event.phase.value == 'merging':
                answers.append(session.pause())

        session.on('progress', on_progress)

        result = await session.upload()

        assert result.file_id == 'F1'
        assert answers and not any(answers)
        assert session.status is SessionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_pause_resets_only_interrupted_chunks(self, make_file):
        path = make_file(1000)
        server = FakePanServer(slice_size=300)
        server.gate = asyncio.Event()
        server.held = {3, 4}
        session = server.session(path, concurrency=4)
        stretches = [[]]

        def on_progress(event):
            if session.status is SessionStatus.RUNNING:
                stretches[-1].append(event.loaded)

        session.on('progress', on_progress)
        runner = asyncio.ensure_future(session.upload())
        await until(lambda: server.inflight == 2 and len(session.tasks) == 4 and all(
            task.status is ChunkStatus.COMPLETED for task in session.tasks[:2]))

        assert session.pause() is True
        stretches.append([])

        assert [session.progress.chunk_loaded(n) for n in (1, 2, 3, 4)] == [300, 300, 0, 0]
        assert session.progress.loaded == 600
        assert [task.status for task in session.tasks] == [
            ChunkStatus.COMPLETED, ChunkStatus.COMPLETED,
            ChunkStatus.ABORTED, ChunkStatus.ABORTED,
        ]

        session.resume()
        server.gate.set()
        await runner

        for stretch in stretches:
            assert stretch == sorted(stretch)
        assert stretches[1][-1] == 1000
        assert server.put_requests[3] == 2
        assert server.assembled() == pattern(1000)
