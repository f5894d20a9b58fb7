"""Unit tests for chronicle.search_service module."""
from __future__ import annotations

from datetime import date
from unittest.mock import MagicMock, patch

import pytest

from chronicle.errors import (
    ChronicleError,
    DuplicateRequestError,
    InvalidParameterError,
    RequestCancelledError,
    ResponseDecodeError,
    TransportError,
)
from chronicle.model import SearchParameters, SearchResults
from chronicle.search_service import SearchService, validate_search


def _capture():
    """Completion callback that records its arguments."""
    calls = []

    def _completion(results, error):
        calls.append((results, error))

    return calls, _completion


class TestValidation:
    """Tests for start_search input validation."""

    @pytest.mark.parametrize("term", ["", "   ", "\t\n"])
    def test_empty_term_is_invalid(self, search_service, fake_transport, term):
        calls, completion = _capture()
        params = SearchParameters(term=term, states=("Alabama", "Colorado"))
        future = search_service.start_search(params, 3, "context", completion)

        assert len(calls) == 1
        assert calls[0][0] is None
        assert isinstance(calls[0][1], InvalidParameterError)
        assert isinstance(future.exception(timeout=0), InvalidParameterError)
        assert fake_transport.search_calls == []
        assert len(search_service.registry) == 0

    @pytest.mark.parametrize("page", [0, -1, -100])
    def test_page_below_one_is_invalid(self, search_service, fake_transport, search_params, page):
        calls, completion = _capture()
        search_service.start_search(search_params, page, "context", completion)

        assert isinstance(calls[0][1], InvalidParameterError)
        assert fake_transport.search_calls == []
        assert len(search_service.registry) == 0

    @pytest.mark.parametrize("page", [1.5, "2", True, None])
    def test_non_integer_page_is_invalid(self, search_service, search_params, page):
        calls, completion = _capture()
        search_service.start_search(search_params, page, "context", completion)
        assert isinstance(calls[0][1], InvalidParameterError)

    def test_reversed_date_range_is_invalid(self, search_service, fake_transport):
        params = SearchParameters(term="fire", earliest_date=date(1910, 1, 1), latest_date=date(1900, 1, 1))
        future = search_service.start_search(params, 1, "context")
        assert isinstance(future.exception(timeout=0), InvalidParameterError)
        assert fake_transport.search_calls == []

    def test_validate_search_accepts_valid_input(self, search_params):
        assert validate_search(search_params, 1, "context") is None

    def test_validate_search_requires_parameters(self):
        assert isinstance(validate_search(None, 1, "context"), InvalidParameterError)


class TestDuplicates:
    """Tests for duplicate request rejection."""

    def test_duplicate_request_is_rejected(self, search_service, fake_transport, search_params):
        search_service.start_search(search_params, 2, "context")
        first_handle = fake_transport.last_search.handle

        calls, completion = _capture()
        future = search_service.start_search(search_params, 2, "context", completion)

        assert isinstance(calls[0][1], DuplicateRequestError)
        assert isinstance(future.exception(timeout=0), DuplicateRequestError)
        assert len(fake_transport.search_calls) == 1
        assert search_service.registry.lookup(next(iter(search_service.registry.keys()))) is first_handle
        assert first_handle.cancel_calls == 0

    def test_different_context_is_not_a_duplicate(self, search_service, fake_transport, search_params):
        calls, completion = _capture()
        search_service.start_search(search_params, 2, "context A", completion)
        search_service.start_search(search_params, 2, "context B", completion)

        assert calls == []
        assert len(fake_transport.search_calls) == 2
        assert search_service.is_search_in_progress(search_params, 2, "context A")
        assert search_service.is_search_in_progress(search_params, 2, "context B")

    def test_different_page_is_not_a_duplicate(self, search_service, fake_transport, search_params):
        search_service.start_search(search_params, 1, "context")
        search_service.start_search(search_params, 2, "context")
        assert len(fake_transport.search_calls) == 2

    def test_same_search_can_restart_after_completion(self, search_service, fake_transport, search_params):
        search_service.start_search(search_params, 2, "context")
        fake_transport.last_search.finish({"items": []})
        future = search_service.start_search(search_params, 2, "context")
        assert not future.done()
        assert len(fake_transport.search_calls) == 2


class TestRequestConstruction:
    """Tests for the request handed to the transport."""

    def test_request_carries_term(self, search_service, fake_transport):
        params = SearchParameters(term="tsunami wave", states=("Alabama", "Colorado"))
        search_service.start_search(params, 4, "context")
        assert "proxtext=tsunami+wave" in fake_transport.last_search.url

    def test_request_carries_states(self, search_service, fake_transport):
        params = SearchParameters(term="tsunami", states=("New York", "Colorado"))
        search_service.start_search(params, 4, "context")
        assert fake_transport.last_search.url.endswith("state=New+York&state=Colorado")

    def test_request_carries_page(self, search_service, fake_transport, search_params):
        search_service.start_search(search_params, 4, "context")
        assert fake_transport.last_search.request.param("page") == 4

    def test_custom_endpoint(self, fake_transport, search_params):
        service = SearchService(transport=fake_transport, base_url="http://localhost:8000/search", rows=5)
        service.start_search(search_params, 1, "context")
        assert fake_transport.last_search.url.startswith("http://localhost:8000/search?format=json&rows=5&")

    def test_build_failure_leaves_nothing_registered(self, search_service, fake_transport, search_params):
        with patch("chronicle.search_service.build_search_request", side_effect=TypeError("bad archive section")):
            calls, completion = _capture()
            future = search_service.start_search(search_params, 1, "context", completion)

        assert isinstance(calls[0][1], ChronicleError)
        assert isinstance(future.exception(timeout=0), ChronicleError)
        assert not search_service.is_search_in_progress(search_params, 1, "context")
        assert fake_transport.search_calls == []

        search_service.start_search(search_params, 1, "context")
        assert len(fake_transport.search_calls) == 1


class TestCompletion:
    """Tests for result delivery."""

    def test_success_delivers_results(self, search_service, fake_transport, search_params, sample_search_payload):
        calls, completion = _capture()
        future = search_service.start_search(search_params, 2, "context", completion)
        fake_transport.last_search.finish(sample_search_payload)

        expected = SearchResults.from_json(sample_search_payload)
        assert calls == [(expected, None)]
        assert future.result(timeout=0) == expected

    def test_empty_payload_delivers_empty_results(self, search_service, fake_transport, search_params):
        calls, completion = _capture()
        search_service.start_search(search_params, 2, "context", completion)
        fake_transport.last_search.finish({})
        assert calls == [(SearchResults(), None)]

    def test_failure_passes_error_through(self, search_service, fake_transport, search_params):
        calls, completion = _capture()
        future = search_service.start_search(search_params, 2, "context", completion)
        error = TransportError("connection reset")
        fake_transport.last_search.finish(None, error)

        assert calls == [(None, error)]
        assert future.exception(timeout=0) is error

    def test_undecodable_payload_is_reported(self, search_service, fake_transport, search_params):
        calls, completion = _capture()
        search_service.start_search(search_params, 2, "context", completion)
        fake_transport.last_search.finish("<html>not json</html>")
        assert calls[0][0] is None
        assert isinstance(calls[0][1], ResponseDecodeError)

    def test_not_in_progress_inside_completion(self, search_service, fake_transport, search_params):
        observed = []

        def _completion(results, error):
            observed.append(search_service.is_search_in_progress(search_params, 2, "context"))

        search_service.start_search(search_params, 2, "context", _completion)
        assert search_service.is_search_in_progress(search_params, 2, "context")
        fake_transport.last_search.finish(None, DuplicateRequestError())
        assert observed == [False]

    def test_not_in_progress_inside_completion_on_success(self, search_service, fake_transport, search_params):
        observed = []
        search_service.start_search(
            search_params, 2, "context",
            lambda r, e: observed.append(search_service.is_search_in_progress(search_params, 2, "context")),
        )
        fake_transport.last_search.finish({"items": []})
        assert observed == [False]

    def test_extra_terminal_callback_is_ignored(self, search_service, fake_transport, search_params):
        calls, completion = _capture()
        search_service.start_search(search_params, 2, "context", completion)
        fake_transport.last_search.finish({"items": []})
        fake_transport.last_search.finish(None, TransportError("late"))
        assert len(calls) == 1

    def test_completion_exception_does_not_break_service(self, search_service, fake_transport, search_params):
        def _bad(results, error):
            raise RuntimeError("caller bug")

        future = search_service.start_search(search_params, 2, "context", _bad)
        fake_transport.last_search.finish({"items": []})
        assert future.result(timeout=0) == SearchResults()
        assert not search_service.is_search_in_progress(search_params, 2, "context")

    def test_synchronous_transport_completion(self, search_params, sample_search_payload):
        """A transport that completes inside search() leaves nothing registered."""
        handle = MagicMock()

        class _SyncTransport:
            def search(self, request, completion):
                completion(sample_search_payload, None)
                return handle

        service = SearchService(transport=_SyncTransport())
        future = service.start_search(search_params, 1, "context")
        assert future.result(timeout=0).total_items == 42
        assert not service.is_search_in_progress(search_params, 1, "context")
        handle.cancel.assert_not_called()

    def test_transport_refusal_is_reported(self, search_params):
        transport = MagicMock()
        transport.search.side_effect = RuntimeError("executor shut down")
        service = SearchService(transport=transport)
        calls, completion = _capture()
        service.start_search(search_params, 1, "context", completion)

        assert isinstance(calls[0][1], TransportError)
        assert not service.is_search_in_progress(search_params, 1, "context")

    def test_blocking_search(self, search_params, sample_search_payload):
        class _SyncTransport:
            def search(self, request, completion):
                completion(sample_search_payload, None)
                return MagicMock()

        service = SearchService(transport=_SyncTransport())
        assert len(service.search(search_params).items) == 2


class TestCancellation:
    """Tests for cancel_search."""

    def test_cancel_active_search(self, search_service, fake_transport, search_params):
        search_service.start_search(search_params, 2, "context")
        assert search_service.cancel_search(search_params, 2, "context") is True
        assert fake_transport.last_search.handle.cancel_calls == 1
        assert not search_service.is_search_in_progress(search_params, 2, "context")

    def test_cancel_unknown_search_is_noop(self, search_service, fake_transport):
        active = SearchParameters(term="Jibberish", states=("Alabama", "Colorado"))
        inactive = SearchParameters(term="Jabberish", states=("Alabama", "Colorado"))
        search_service.start_search(active, 2, "context")

        assert search_service.cancel_search(inactive, 2, "context") is False
        assert fake_transport.last_search.handle.cancel_calls == 0
        assert search_service.is_search_in_progress(active, 2, "context")

    def test_cancel_twice_cancels_once(self, search_service, fake_transport, search_params):
        search_service.start_search(search_params, 2, "context")
        search_service.cancel_search(search_params, 2, "context")
        search_service.cancel_search(search_params, 2, "context")
        assert fake_transport.last_search.handle.cancel_calls == 1

    def test_late_cancellation_error_still_delivered(self, search_service, fake_transport, search_params):
        calls, completion = _capture()
        search_service.start_search(search_params, 2, "context", completion)
        call = fake_transport.last_search
        search_service.cancel_search(search_params, 2, "context")
        call.finish(None, RequestCancelledError("cancelled"))

        assert isinstance(calls[0][1], RequestCancelledError)

    def test_late_completion_does_not_remove_newer_search(self, search_service, fake_transport, search_params):
        search_service.start_search(search_params, 2, "context")
        stale = fake_transport.last_search
        search_service.cancel_search(search_params, 2, "context")

        search_service.start_search(search_params, 2, "context")
        stale.finish(None, RequestCancelledError("cancelled"))

        assert search_service.is_search_in_progress(search_params, 2, "context")

    def test_cancelling_future_cancels_request(self, search_service, fake_transport, search_params):
        future = search_service.start_search(search_params, 2, "context")
        assert future.cancel() is True
        assert fake_transport.last_search.handle.cancel_calls == 1
        assert not search_service.is_search_in_progress(search_params, 2, "context")

    def test_cancel_all(self, search_service, fake_transport, search_params):
        search_service.start_search(search_params, 1, "a")
        search_service.start_search(search_params, 1, "b")
        assert search_service.cancel_all() == 2
        assert all(c.handle.cancel_calls == 1 for c in fake_transport.search_calls)


class TestInProgress:
    """Tests for is_search_in_progress."""

    def test_active_search_is_in_progress(self, search_service, search_params):
        search_service.start_search(search_params, 2, "context")
        assert search_service.is_search_in_progress(search_params, 2, "context")

    def test_other_search_is_not_in_progress(self, search_service):
        active = SearchParameters(term="Jibberish", states=("Alabama", "Colorado"))
        inactive = SearchParameters(term="Jibberish", states=("Alabama",))
        search_service.start_search(active, 2, "context")
        assert not search_service.is_search_in_progress(inactive, 2, "context")

    def test_unhashable_context_is_not_in_progress(self, search_service, search_params):
        assert search_service.is_search_in_progress(search_params, 2, ["ctx"]) is False
        assert search_service.cancel_search(search_params, 2, ["ctx"]) is False
