import pytest
from django.test import override_settings

from labs.exceptions import InvalidResult
from labs.models import LabTest
from labs.services.results import validate_result


def errors_of(payload, **kw):
    with pytest.raises(InvalidResult) as exc:
        validate_result(payload, **kw)
    return exc.value.extra


def test_minimal_result_is_normalized():
    cleaned = validate_result({'parameters': [{'name': 'Glucose', 'value': 98, 'unit': None}]})
    assert cleaned == {
        'parameters': [{'name': 'Glucose', 'value': 98}],
        'interpretation': None,
        'attachments': [],
    }


def test_empty_result_is_accepted():
    assert validate_result({}) == {'parameters': [], 'interpretation': None, 'attachments': []}


@pytest.mark.parametrize('payload', [None, [], 'text', 42])
def test_non_object_payload_rejected(payload):
    with pytest.raises(InvalidResult):
        validate_result(payload)


def test_all_problems_are_reported_together():
    errors = errors_of({
        'parameters': [
            {'name': 'Na', 'value': 140},
            {'name': 'na', 'value': 141},
            {'name': 'K', 'value': True},
            {'value': 1},
            'oops',
            {'name': 'Cl', 'value': 101, 'flag': 'H'},
        ],
        'interpretation': 7,
    })
    assert any("duplicate parameter 'na'" in e for e in errors)
    assert 'parameters[2].value: required' in errors
    assert 'parameters[3].name: required' in errors
    assert 'parameters[4]: must be an object' in errors
    assert any(e.startswith('parameters[5]: unknown keys') for e in errors)
    assert 'interpretation: must be a string' in errors


def test_blank_string_value_rejected():
    assert errors_of({'parameters': [{'name': 'CRP', 'value': '  '}]}) == ['parameters[0].value: required']


def test_parameters_must_be_a_list():
    assert errors_of({'parameters': {'name': 'x'}}) == ['parameters: must be a list']


@pytest.mark.parametrize('uri,ok', [
    ('https://files.example.org/r/1.pdf', True),
    ('s3://lab-results/2026/10/1.png', True),
    ('/media/lab/1.pdf', True),
    ('report.pdf', False),
    ('https://files.example.org/my report.pdf', False),
    ('', False),
])
def test_attachment_shape(uri, ok):
    payload = {'attachments': [uri]}
    if ok:
        assert validate_result(payload)['attachments'] == [uri]
    else:
        with pytest.raises(InvalidResult):
            validate_result(payload)


@override_settings(LAB_ATTACHMENT_MAX_LEN=20)
def test_attachment_length_bound():
    assert errors_of({'attachments': ['https://example.org/very/long/path.pdf']}) == ['attachments[0]: too long']


@pytest.mark.django_db
def test_catalog_units_restrict_parameter_units():
    test = LabTest.objects.create(code='BIO005', name='Serum Electrolytes', units=['mmol/L', 'mEq/L'])
    ok = validate_result({'parameters': [{'name': 'Na', 'value': 139, 'unit': 'mmol/L'}]}, test=test)
    assert ok['parameters'][0]['unit'] == 'mmol/L'
    errors = errors_of({'parameters': [{'name': 'Na', 'value': 139, 'unit': 'mg/dL'}]}, test=test)
    assert errors == ["parameters[0].unit: 'mg/dL' is not a recognized unit for this test"]


@pytest.mark.django_db
def test_catalog_without_units_leaves_units_free():
    test = LabTest.objects.create(code='CLI001', name='Urinalysis Routine')
    assert validate_result({'parameters': [{'name': 'Colour', 'value': 'amber', 'unit': 'n/a'}]}, test=test)
