import pytest

from campus_library.query_builder import SelectStatement, UpdateStatement, like_pattern

USER_COLUMNS = {'full_name', 'role', 'status', 'department'}


def test_update_statement_binds_values_and_appends_identifier_last() -> None:
    update = UpdateStatement('users', USER_COLUMNS).set_many({'full_name': 'Ada', 'role': 'admin'})

    statement, values = update.build('id', 7)

    assert str(statement) == 'UPDATE users SET full_name = :p1, role = :p2 WHERE id = :p3'
    assert values == ['Ada', 'admin', 7]
    assert update.assignments == [('full_name', ':p1', 'Ada'), ('role', ':p2', 'admin')]


def test_update_statement_skips_none_values() -> None:
    update = UpdateStatement('users', USER_COLUMNS).set_many({'full_name': None, 'department': 'Physics'})

    statement, values = update.build('id', 3)

    assert str(statement) == 'UPDATE users SET department = :p1 WHERE id = :p2'
    assert values == ['Physics', 3]


def test_update_statement_keeps_untrusted_values_out_of_sql() -> None:
    hostile = "x'; DROP TABLE users; --"
    statement, values = UpdateStatement('users', USER_COLUMNS).set('full_name', hostile).build('id', 1)

    assert hostile not in str(statement)
    assert values[0] == hostile


def test_update_statement_rejects_columns_outside_allow_list() -> None:
    with pytest.raises(ValueError):
        UpdateStatement('users', USER_COLUMNS).set('password_hash', 'abc')

    with pytest.raises(ValueError):
        UpdateStatement('users', USER_COLUMNS).set_many({'role = role; --': 'admin'})


def test_update_statement_rejects_duplicate_column() -> None:
    update = UpdateStatement('users', USER_COLUMNS).set('role', 'student')

    with pytest.raises(ValueError):
        update.set('role', 'admin')


def test_update_statement_without_assignments_cannot_build() -> None:
    update = UpdateStatement('users', USER_COLUMNS).set_many({'role': None})

    assert update.is_empty()
    with pytest.raises(ValueError, match='No updates provided'):
        update.build('id', 1)


def test_update_statement_rejects_invalid_identifiers() -> None:
    with pytest.raises(ValueError):
        UpdateStatement('users; DROP TABLE users', USER_COLUMNS)

    with pytest.raises(ValueError):
        UpdateStatement('users', USER_COLUMNS).set('role', 'admin').build('id OR 1=1', 1)


def test_select_statement_numbers_placeholders_across_conditions() -> None:
    query = (
        SelectStatement('users')
        .where('status != {}', 'inactive')
        .where('role = {}', 'faculty')
        .where('(LOWER(full_name) LIKE {} OR LOWER(email) LIKE {})', '%a%', '%a%')
        .order_by('created_at DESC', 'id DESC')
    )

    statement, values = query.build()

    assert str(statement) == (
        'SELECT * FROM users WHERE status != :p1 AND role = :p2 '
        'AND (LOWER(full_name) LIKE :p3 OR LOWER(email) LIKE :p4) '
        'ORDER BY created_at DESC, id DESC'
    )
    assert values == ['inactive', 'faculty', '%a%', '%a%']


def test_select_statement_without_conditions() -> None:
    statement, values = SelectStatement('users', columns='id, email').build()

    assert str(statement) == 'SELECT id, email FROM users'
    assert values == []


@pytest.mark.parametrize(
    ('term', 'expected'),
    [
        ('ALICE', '%alice%'),
        ('100%', '%100\\%%'),
        ('first_last', '%first\\_last%'),
        ('back\\slash', '%back\\\\slash%'),
    ],
)
def test_like_pattern_lowercases_and_escapes_wildcards(term: str, expected: str) -> None:
    assert like_pattern(term) == expected
