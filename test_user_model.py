from models import db, User, USER_HANDLE_LENGTH


def test_create_user_assigns_random_handle(app):
    first = User.create_user('u1', 'alice', 'Alice')
    second = User.create_user('u2', 'bob', 'Bob')

    assert len(first.user_handle) == USER_HANDLE_LENGTH
    assert first.user_handle != second.user_handle


def test_user_round_trip(app):
    user = User.create_user('u1', 'alice', 'Alice')
    db.session.add(user)
    db.session.commit()

    found = User.query.filter_by(user_name='alice').one()

    assert found.user_id == 'u1'
    assert found.display_name == 'Alice'
    assert found.created_at is not None
    assert found.credentials == []
    assert repr(found) == '<User alice>'
