from datetime import timedelta

from backend.core.clock import utcnow
from backend.models.course import CourseEnrollment
from backend.models.live_class import ClassEnrollment, ClassWaitlistEntry
from backend.routes import class_routes


def test_full_class_puts_second_student_on_waitlist(client, make_mentor, make_user, make_class, auth_headers) -> None:
    live_class = make_class(make_mentor(), max_students=1)
    first = make_user()
    second = make_user()

    enrolled = client.post(f'/classes/{live_class.id}/enroll', headers=auth_headers(first))
    waitlisted = client.post(f'/classes/{live_class.id}/enroll', headers=auth_headers(second))

    assert enrolled.status_code == 200
    assert enrolled.json()['status'] == 'enrolled'
    assert waitlisted.status_code == 202
    body = waitlisted.json()
    assert body['status'] == 'waitlisted'
    assert second.id not in body['live_class']['enrolled_students']
    assert body['live_class']['waiting_list'] == [second.id]


def test_waitlisting_twice_does_not_duplicate_entry(client, db, make_mentor, make_user, make_class, auth_headers) -> None:
    live_class = make_class(make_mentor(), max_students=1)
    client.post(f'/classes/{live_class.id}/enroll', headers=auth_headers(make_user()))
    waiting = make_user()

    first = client.post(f'/classes/{live_class.id}/enroll', headers=auth_headers(waiting))
    second = client.post(f'/classes/{live_class.id}/enroll', headers=auth_headers(waiting))

    assert first.status_code == 202
    assert second.status_code == 202
    assert second.json()['live_class']['waiting_list'] == [waiting.id]
    assert db.query(ClassWaitlistEntry).filter(ClassWaitlistEntry.class_id == live_class.id).count() == 1


def test_enrolling_twice_is_rejected(client, make_mentor, make_user, make_class, auth_headers) -> None:
    live_class = make_class(make_mentor())
    student = make_user()

    client.post(f'/classes/{live_class.id}/enroll', headers=auth_headers(student))
    response = client.post(f'/classes/{live_class.id}/enroll', headers=auth_headers(student))

    assert response.status_code == 400
    assert response.json() == {'message': 'Already enrolled in this class'}


def test_waitlisted_student_moves_to_enrolled_when_seat_is_free(
    client, db, make_mentor, make_user, make_class, auth_headers,
) -> None:
    live_class = make_class(make_mentor(), max_students=1)
    first = make_user()
    waiting = make_user()
    client.post(f'/classes/{live_class.id}/enroll', headers=auth_headers(first))
    client.post(f'/classes/{live_class.id}/enroll', headers=auth_headers(waiting))

    db.query(ClassEnrollment).filter(ClassEnrollment.user_id == first.id).delete()
    db.commit()

    response = client.post(f'/classes/{live_class.id}/enroll', headers=auth_headers(waiting))

    assert response.status_code == 200
    assert response.json()['live_class']['enrolled_students'] == [waiting.id]
    assert response.json()['live_class']['waiting_list'] == []


def test_cancelled_and_ended_classes_reject_enrollment(client, make_mentor, make_user, make_class, auth_headers) -> None:
    mentor = make_mentor()
    cancelled = make_class(mentor, is_cancelled=True, status='cancelled')
    ended = make_class(mentor, start_time=utcnow() - timedelta(hours=3), end_time=utcnow() - timedelta(hours=2))
    student = make_user()

    assert client.post(f'/classes/{cancelled.id}/enroll', headers=auth_headers(student)).status_code == 400
    assert client.post(f'/classes/{ended.id}/enroll', headers=auth_headers(student)).status_code == 400


def test_only_students_enroll_in_classes(client, make_mentor, make_class, auth_headers) -> None:
    mentor = make_mentor()
    live_class = make_class(mentor)

    response = client.post(f'/classes/{live_class.id}/enroll', headers=auth_headers(mentor))

    assert response.status_code == 403


def test_create_class_requires_end_after_start(client, make_mentor, auth_headers) -> None:
    start = utcnow() + timedelta(days=2)

    response = client.post(
        '/classes/',
        json={
            'title': 'Backwards',
            'start_time': start.isoformat(),
            'end_time': (start - timedelta(hours=1)).isoformat(),
        },
        headers=auth_headers(make_mentor()),
    )

    assert response.status_code == 400
    assert response.json() == {'message': 'End time must be after start time'}


def test_create_class_auto_enrolls_course_students(
    client, db, make_mentor, make_user, make_course, auth_headers,
) -> None:
    mentor = make_mentor()
    course = make_course(mentor)
    students = [make_user(), make_user()]
    for student in students:
        db.add(CourseEnrollment(user_id=student.id, course_id=course.id))
    db.commit()
    start = utcnow() + timedelta(days=2)

    response = client.post(
        '/classes/',
        json={
            'title': 'Course Kickoff',
            'course_id': course.id,
            'start_time': start.isoformat(),
            'end_time': (start + timedelta(hours=1)).isoformat(),
        },
        headers=auth_headers(mentor),
    )

    assert response.status_code == 201
    assert sorted(response.json()['enrolled_students']) == sorted(student.id for student in students)


def test_create_class_rejects_course_of_another_mentor(client, make_mentor, make_course, auth_headers) -> None:
    course = make_course(make_mentor())
    start = utcnow() + timedelta(days=2)

    response = client.post(
        '/classes/',
        json={
            'title': 'Borrowed Course',
            'course_id': course.id,
            'start_time': start.isoformat(),
            'end_time': (start + timedelta(hours=1)).isoformat(),
        },
        headers=auth_headers(make_mentor()),
    )

    assert response.status_code == 403


def test_cancelling_through_update_sets_flag(client, make_mentor, make_class, auth_headers) -> None:
    mentor = make_mentor()
    live_class = make_class(mentor)

    response = client.put(f'/classes/{live_class.id}', json={'status': 'cancelled'}, headers=auth_headers(mentor))

    assert response.status_code == 200
    assert response.json()['is_cancelled'] is True
    assert all(item['id'] != live_class.id for item in client.get('/classes/').json())


def test_waitlist_insert_conflict_still_reports_waitlisted(
    client, db, persist, monkeypatch, make_mentor, make_user, make_class, auth_headers,
) -> None:
    live_class = make_class(make_mentor(), max_students=1)
    client.post(f'/classes/{live_class.id}/enroll', headers=auth_headers(make_user()))
    waiting = make_user()
    # another request already stored the entry after this one looked it up
    persist(ClassWaitlistEntry(class_id=live_class.id, user_id=waiting.id))
    monkeypatch.setattr(class_routes, 'find_waitlist_entry', lambda db, class_id, user_id: None)

    response = client.post(f'/classes/{live_class.id}/enroll', headers=auth_headers(waiting))

    assert response.status_code == 202
    assert response.json()['status'] == 'waitlisted'
    assert response.json()['live_class']['waiting_list'] == [waiting.id]
    assert db.query(ClassWaitlistEntry).filter(ClassWaitlistEntry.class_id == live_class.id).count() == 1


def test_rescheduling_cancelled_class_clears_flag(client, make_mentor, make_user, make_class, auth_headers) -> None:
    mentor = make_mentor()
    live_class = make_class(mentor)
    client.put(f'/classes/{live_class.id}', json={'status': 'cancelled'}, headers=auth_headers(mentor))

    response = client.put(f'/classes/{live_class.id}', json={'status': 'scheduled'}, headers=auth_headers(mentor))
    enrolled = client.post(f'/classes/{live_class.id}/enroll', headers=auth_headers(make_user()))

    assert response.status_code == 200
    assert response.json()['status'] == 'scheduled'
    assert response.json()['is_cancelled'] is False
    assert enrolled.status_code == 200
    assert any(item['id'] == live_class.id for item in client.get('/classes/').json())


def test_class_update_follows_not_found_then_forbidden(
    client, make_mentor, make_user, make_class, auth_headers,
) -> None:
    live_class = make_class(make_mentor())
    other_mentor = make_mentor()

    missing = client.put('/classes/missing', json={'title': 'x'}, headers=auth_headers(other_mentor))
    forbidden = client.put(f'/classes/{live_class.id}', json={'title': 'x'}, headers=auth_headers(other_mentor))
    admin = client.put(f'/classes/{live_class.id}', json={'title': 'Admin Edit'}, headers=auth_headers(make_user(role='admin')))

    assert missing.status_code == 404
    assert forbidden.status_code == 403
    assert admin.status_code == 200


def test_attendance_only_for_enrolled_students_after_start(
    client, make_mentor, make_user, make_class, auth_headers,
) -> None:
    mentor = make_mentor()
    student = make_user()
    upcoming = make_class(mentor)
    running = make_class(mentor, start_time=utcnow() - timedelta(minutes=30), end_time=utcnow() + timedelta(minutes=30))
    client.post(f'/classes/{running.id}/enroll', headers=auth_headers(student))

    too_early = client.post(
        f'/classes/{upcoming.id}/attendance',
        json={'attendance': {student.id: True}},
        headers=auth_headers(mentor),
    )
    unknown = client.post(
        f'/classes/{running.id}/attendance',
        json={'attendance': {'stranger': True}},
        headers=auth_headers(mentor),
    )
    recorded = client.post(
        f'/classes/{running.id}/attendance',
        json={'attendance': {student.id: True}},
        headers=auth_headers(mentor),
    )

    assert too_early.status_code == 400
    assert unknown.status_code == 400
    assert recorded.status_code == 200
    assert recorded.json()['records'] == [{'user_id': student.id, 'attended': True}]
    assert recorded.json()['status'] == 'scheduled'


def test_student_sees_own_classes(client, make_mentor, make_user, make_class, auth_headers) -> None:
    mentor = make_mentor()
    joined = make_class(mentor)
    make_class(mentor, title='Not Joined')
    student = make_user()
    client.post(f'/classes/{joined.id}/enroll', headers=auth_headers(student))

    response = client.get('/classes/student', headers=auth_headers(student))

    assert [item['id'] for item in response.json()] == [joined.id]
