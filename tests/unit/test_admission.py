import pytest

from tools.errors import AdmissionError
from use_cases.admission import MAX_SESSIONS, AdmissionController


def test_single_session_limit():
    assert MAX_SESSIONS == 1
    admission = AdmissionController()

    admission.acquire()
    with pytest.raises(AdmissionError, match="Maximum connections reached"):
        admission.acquire()
    assert admission.active == 1


def test_release_frees_the_slot():
    admission = AdmissionController()
    admission.acquire()
    admission.release()
    admission.acquire()
    assert admission.active == 1


def test_release_never_goes_negative():
    admission = AdmissionController()
    admission.release()
    assert admission.active == 0


def test_configurable_limit():
    admission = AdmissionController(max_sessions=2)
    admission.acquire()
    admission.acquire()
    with pytest.raises(AdmissionError):
        admission.acquire()
