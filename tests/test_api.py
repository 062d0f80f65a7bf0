from conftest import NOW, NORMAL_VITALS

CHECK_IN = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "email": "ada@example.com",
    "symptoms": "Chest pain when climbing stairs",
    "vitals": dict(NORMAL_VITALS, temperature=101.6),
}


def walk_in(client, email, symptoms="Mild cough for a week", **vitals):
    payload = dict(CHECK_IN, email=email, symptoms=symptoms, vitals=dict(NORMAL_VITALS, **vitals))
    response = client.post("/visits/check-in", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_root(client):
    assert client.get("/").json()["status"] == "ok"


def test_check_in_and_track(client):
    response = client.post("/visits/check-in", json=CHECK_IN)
    assert response.status_code == 201
    body = response.json()
    assert body["triage_level"] == "high"
    assert body["triage_score"] == 60
    assert body["position"] == 1
    assert body["estimated_wait_time"] == 15

    track = client.get("/visits/track", params={"token": body["tracking_token"]})
    assert track.status_code == 200
    assert track.json() == {"visit_id": body["visit_id"], "patient_id": body["patient_id"],
                            "triage_level": "high"}


def test_check_in_rejects_out_of_range_vitals(client):
    payload = dict(CHECK_IN, vitals=dict(NORMAL_VITALS, heart_rate=250))
    assert client.post("/visits/check-in", json=payload).status_code == 422


def test_check_in_rejects_blank_name(client):
    payload = dict(CHECK_IN, first_name="   ")
    assert client.post("/visits/check-in", json=payload).status_code == 422


def test_bad_tracking_token(client):
    response = client.get("/visits/track", params={"token": "garbage"})
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "ValidationError"


def test_triage_only(client):
    response = client.post("/visits/triage", json={
        "vitals": dict(NORMAL_VITALS, pain_level=8),
        "symptoms": "possible poisoning",
    })
    assert response.status_code == 200
    assert response.json() == {
        "score": 45,
        "level": "medium",
        "factors": ["Severe pain level: 8/10", "Serious symptoms detected"],
    }


def test_queue_listing_and_call_next(client, doctor):
    low = walk_in(client, "low@example.com")
    high = walk_in(client, "high@example.com", symptoms="Severe bleeding from a cut", temperature=104.0)

    queue = client.get("/queue/").json()
    assert [e["id"] for e in queue] == [high["queue_entry_id"], low["queue_entry_id"]]
    assert [e["position"] for e in queue] == [1, 2]

    response = client.post("/queue/call-next", json={"doctor_id": doctor.id, "assigned_room": "R4"})
    assert response.status_code == 200
    assert response.json()["id"] == high["queue_entry_id"]
    assert response.json()["status"] == "in-progress"

    mine = client.get(f"/queue/doctor/{doctor.id}").json()
    assert [e["id"] for e in mine] == [high["queue_entry_id"]]


def test_call_next_on_empty_queue(client, doctor):
    response = client.post("/queue/call-next", json={"doctor_id": doctor.id})
    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "EmptyQueueError"


def test_invalid_transition_is_409(client, doctor):
    entry_id = walk_in(client, "t@example.com")["queue_entry_id"]
    response = client.patch(f"/queue/{entry_id}/status", json={"status": "completed"})
    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["current"] == "waiting"
    assert detail["attempted"] == "completed"

    response = client.patch(f"/queue/{entry_id}/status", json={"status": "in-progress", "doctor_id": doctor.id})
    assert response.status_code == 200
    assert response.json()["doctor_id"] == doctor.id


def test_remove_needs_reason(client):
    entry_id = walk_in(client, "r@example.com")["queue_entry_id"]
    assert client.delete(f"/queue/{entry_id}").status_code == 422
    assert client.delete(f"/queue/{entry_id}", params={"reason": "  "}).status_code == 400

    response = client.delete(f"/queue/{entry_id}", params={"reason": "Went home"})
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"


def test_recalculate_and_stats(client, clock):
    walk_in(client, "s1@example.com")
    walk_in(client, "s2@example.com", pain_level=9)
    clock.advance(minutes=30)

    response = client.post("/queue/recalculate")
    assert response.json() == {"success": True, "message": "Queue positions recalculated", "updated_count": 2}

    stats = client.get("/queue/stats").json()
    assert stats["total"] == 2
    assert stats["visits_today"] == 2
    assert stats["by_status"] == [{"status": "waiting", "count": 2, "avg_wait_time": 30.0}]


def test_appointment_booking_flow(client, patient, doctor):
    booking = {
        "patient_id": patient.id,
        "doctor_id": doctor.id,
        "scheduled_time": NOW.replace(hour=11).isoformat(),
        "duration": 30,
        "reason_for_visit": "Blood test results",
    }
    created = client.post("/appointments/", json=booking)
    assert created.status_code == 201, created.text
    appointment = created.json()
    assert appointment["status"] == "scheduled"
    assert appointment["end_time"] == NOW.replace(hour=11, minute=30).isoformat()

    clash = client.post("/appointments/", json=dict(booking, scheduled_time=NOW.replace(hour=11, minute=15).isoformat()))
    assert clash.status_code == 409
    assert clash.json()["detail"]["conflicts"][0]["id"] == appointment["id"]

    availability = client.get("/appointments/availability", params={
        "doctor_id": doctor.id, "scheduled_time": NOW.replace(hour=11).isoformat(), "duration": 30,
    }).json()
    assert availability["available"] is False
    assert len(availability["suggested_times"]) == 3

    listing = client.get("/appointments/", params={"doctor_id": doctor.id}).json()
    assert listing["total"] == 1

    confirmed = client.patch(f"/appointments/{appointment['id']}", json={"status": "confirmed"})
    assert confirmed.json()["status"] == "confirmed"

    cancelled = client.post(f"/appointments/{appointment['id']}/cancel",
                            json={"cancellation_reason": "Feeling better"})
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"


def test_appointment_outside_hours(client, patient, doctor):
    response = client.post("/appointments/", json={
        "patient_id": patient.id,
        "doctor_id": doctor.id,
        "scheduled_time": NOW.replace(hour=18).isoformat(),
        "reason_for_visit": "Evening visit",
    })
    assert response.status_code == 400


def test_appointment_check_in(client, patient, doctor):
    created = client.post("/appointments/", json={
        "patient_id": patient.id,
        "doctor_id": doctor.id,
        "scheduled_time": NOW.replace(hour=10).isoformat(),
        "reason_for_visit": "Checkup",
    }).json()

    payload = {"symptoms": "Routine checkup", "vitals": NORMAL_VITALS}
    response = client.post(f"/appointments/{created['id']}/check-in", json=payload)
    assert response.status_code == 201
    assert response.json()["patient_id"] == patient.id

    again = client.post(f"/appointments/{created['id']}/check-in", json=payload)
    assert again.status_code == 409
