#!/usr/bin/env python3
"""
Test pytest des routes de l'API (client in-process, SQLite en mémoire)
"""

import re

import pytest

API_BASE = "/api/v1"


def get_etudiant_data(prenom="Amina"):
    """Données de test pour un étudiant"""
    return {
        "prenom": prenom,
        "nom": "Ben Salah",
        "email": f"{prenom.lower()}@example.tn",
        "nom_responsable": "Sami Ben Salah",
        "telephone_responsable": "+216 20 000 000",
    }


async def creer_parcours(client, nombre_niveaux=2, seances_par_niveau=2):
    """Crée un étudiant, une formation et l'inscription ; renvoie (etudiant, formation)"""
    etudiant = (await client.post(f"{API_BASE}/etudiants", json=get_etudiant_data())).json()
    formation_response = await client.post(f"{API_BASE}/formations", json={
        "nom": "Robotique junior",
        "nombre_niveaux": nombre_niveaux,
        "seances_par_niveau": seances_par_niveau,
    })
    assert formation_response.status_code == 201, f"La création doit réussir: {formation_response.text}"
    formation = formation_response.json()

    inscription_response = await client.post(f"{API_BASE}/inscriptions", json={
        "etudiant_id": etudiant["id"],
        "formation_id": formation["id"],
    })
    assert inscription_response.status_code == 201, f"L'inscription doit réussir: {inscription_response.text}"
    return etudiant, formation


def seances(formation):
    return [s for niveau in formation["niveaux"] for s in niveau["seances"]]


def saisie(etudiant, seances_list, present=True):
    return {"records": [
        {"etudiant_id": etudiant["id"], "seance_id": s["id"], "present": present}
        for s in seances_list
    ]}

# ──────────────────────────────────────────────────────────────
# Etudiants / formations / inscriptions
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_root(client):
    response = await client.get("/")
    assert response.status_code == 200

@pytest.mark.asyncio
async def test_create_etudiant(client):
    """Test de création et de récupération d'un étudiant"""
    response = await client.post(f"{API_BASE}/etudiants", json=get_etudiant_data())
    assert response.status_code == 201, f"La création doit réussir: {response.text}"
    etudiant = response.json()

    response = await client.get(f"{API_BASE}/etudiants/{etudiant['id']}")
    assert response.status_code == 200
    assert response.json()["nom_responsable"] == "Sami Ben Salah"

    response = await client.get(f"{API_BASE}/etudiants")
    assert len(response.json()) == 1

@pytest.mark.asyncio
async def test_etudiant_introuvable(client):
    response = await client.get(f"{API_BASE}/etudiants/999")
    assert response.status_code == 404

@pytest.mark.asyncio
async def test_formation_structure_par_defaut(client):
    """Test que la formation reçoit 4 niveaux de 6 séances par défaut"""
    response = await client.post(f"{API_BASE}/formations", json={"nom": "Électronique"})
    assert response.status_code == 201
    formation = response.json()

    assert [n["numero_niveau"] for n in formation["niveaux"]] == [1, 2, 3, 4]
    assert all(len(n["seances"]) == 6 for n in formation["niveaux"])
    assert formation["niveaux"][0]["seances"][0]["statut"] == "pending"

    response = await client.get(f"{API_BASE}/formations/{formation['id']}")
    assert response.json() == formation

@pytest.mark.asyncio
async def test_formation_introuvable(client):
    response = await client.get(f"{API_BASE}/formations/999")
    assert response.status_code == 404

@pytest.mark.asyncio
async def test_inscription_en_double(client):
    etudiant, formation = await creer_parcours(client)

    response = await client.post(f"{API_BASE}/inscriptions", json={
        "etudiant_id": etudiant["id"],
        "formation_id": formation["id"],
    })
    assert response.status_code == 409

    response = await client.get(f"{API_BASE}/inscriptions/formation/{formation['id']}")
    inscriptions = response.json()
    assert len(inscriptions) == 1
    assert inscriptions[0]["niveau_actuel"] == 1
    assert inscriptions[0]["statut"] == "active"

@pytest.mark.asyncio
async def test_inscription_etudiant_inconnu(client):
    formation = (await client.post(f"{API_BASE}/formations", json={"nom": "Arduino"})).json()
    response = await client.post(f"{API_BASE}/inscriptions", json={"etudiant_id": 999, "formation_id": formation["id"]})
    assert response.status_code == 404

# ──────────────────────────────────────────────────────────────
# Présences et progression
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_parcours_complet(client):
    """Test du parcours complet : saisie, avancement, certificat"""
    etudiant, formation = await creer_parcours(client)
    premiere_seance = seances(formation)[0]

    response = await client.get(f"{API_BASE}/presences/seance/{premiere_seance['id']}")
    assert response.status_code == 200
    feuille = response.json()
    assert len(feuille) == 1
    assert feuille[0]["etat"] == "pending", "Une séance non marquée doit être en attente"

    response = await client.post(f"{API_BASE}/presences/bulk", json=saisie(etudiant, seances(formation)))
    assert response.status_code == 200, f"La saisie doit réussir: {response.text}"
    assert len(response.json()) == 4

    response = await client.get(f"{API_BASE}/inscriptions/etudiant/{etudiant['id']}")
    inscription = response.json()[0]
    assert inscription["niveau_actuel"] == 2
    assert inscription["statut"] == "completed"

    response = await client.get(f"{API_BASE}/progression/formation/{formation['id']}/etudiant/{etudiant['id']}")
    progression = response.json()
    assert progression["statut_formation"] == "completed"
    assert progression["eligible"] is True
    assert progression["niveaux_valides"] == 2
    assert progression["seances_suivies"] == 4

    response = await client.get(f"{API_BASE}/certificats/etudiant/{etudiant['id']}")
    certificats = response.json()
    assert len(certificats) == 1
    numero = certificats[0]["numero_certificat"]
    assert re.fullmatch(r"ASTBA-\d{4}-\d{4}-\d{6}", numero), f"Format inattendu : {numero}"

    # Nouvelle saisie identique : pas de second certificat
    await client.post(f"{API_BASE}/presences/bulk", json=saisie(etudiant, seances(formation)))
    response = await client.get(f"{API_BASE}/certificats")
    assert [c["numero_certificat"] for c in response.json()] == [numero]

    response = await client.post(f"{API_BASE}/certificats", json={
        "etudiant_id": etudiant["id"],
        "formation_id": formation["id"],
    })
    assert response.status_code == 409

    response = await client.get(f"{API_BASE}/certificats/eligibles")
    eligibles = response.json()
    assert len(eligibles) == 1
    assert eligibles[0]["deja_certifie"] is True
    assert eligibles[0]["numero_certificat"] == numero

@pytest.mark.asyncio
async def test_feuille_apres_saisie(client):
    etudiant, formation = await creer_parcours(client)
    seance = seances(formation)[0]

    await client.post(f"{API_BASE}/presences/bulk", json=saisie(etudiant, [seance], present=False))

    feuille = (await client.get(f"{API_BASE}/presences/seance/{seance['id']}")).json()
    assert feuille[0]["etat"] == "absent"

@pytest.mark.asyncio
async def test_saisie_seance_inconnue(client):
    """Test qu'une séance inconnue rejette toute la saisie"""
    etudiant, formation = await creer_parcours(client)
    payload = saisie(etudiant, seances(formation))
    payload["records"].append({"etudiant_id": etudiant["id"], "seance_id": 9999, "present": True})

    response = await client.post(f"{API_BASE}/presences/bulk", json=payload)
    assert response.status_code == 404

    response = await client.get(f"{API_BASE}/progression/formation/{formation['id']}/etudiant/{etudiant['id']}")
    assert response.json()["seances_suivies"] == 0, "Aucune présence ne doit être écrite"

@pytest.mark.asyncio
async def test_progression_sans_inscription(client):
    formation = (await client.post(f"{API_BASE}/formations", json={"nom": "Arduino"})).json()
    response = await client.get(f"{API_BASE}/progression/formation/{formation['id']}/etudiant/1")
    assert response.status_code == 404

@pytest.mark.asyncio
async def test_statut_seance_sans_effet_sur_progression(client):
    etudiant, formation = await creer_parcours(client)
    seance = seances(formation)[0]

    response = await client.patch(f"{API_BASE}/seances/{seance['id']}/statut", json={"statut": "fini"})
    assert response.status_code == 200
    assert response.json()["statut"] == "fini"

    response = await client.get(f"{API_BASE}/progression/formation/{formation['id']}/etudiant/{etudiant['id']}")
    progression = response.json()
    assert progression["seances_suivies"] == 0
    assert progression["niveaux"][0]["statut"] == "in_progress"

# ──────────────────────────────────────────────────────────────
# Certificats
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_certificat_non_eligible(client):
    etudiant, formation = await creer_parcours(client)
    await client.post(f"{API_BASE}/presences/bulk", json=saisie(etudiant, seances(formation)[:2]))

    response = await client.post(f"{API_BASE}/certificats", json={
        "etudiant_id": etudiant["id"],
        "formation_id": formation["id"],
    })
    assert response.status_code == 400

    response = await client.get(f"{API_BASE}/certificats/eligibles")
    assert response.json() == []

@pytest.mark.asyncio
async def test_certificat_formation_inconnue(client):
    etudiant = (await client.post(f"{API_BASE}/etudiants", json=get_etudiant_data())).json()
    response = await client.post(f"{API_BASE}/certificats", json={"etudiant_id": etudiant["id"], "formation_id": 999})
    assert response.status_code == 404

@pytest.mark.asyncio
async def test_saisie_identifiants_chaines(client):
    """Test qu'une saisie avec des identifiants en chaîne aboutit au même résultat"""
    etudiant, formation = await creer_parcours(client)
    payload = {"records": [
        {"etudiant_id": str(etudiant["id"]), "seance_id": str(s["id"]), "present": True}
        for s in seances(formation)
    ]}

    response = await client.post(f"{API_BASE}/presences/bulk", json=payload)
    assert response.status_code == 200, f"La saisie doit réussir: {response.text}"

    inscription = (await client.get(f"{API_BASE}/inscriptions/etudiant/{etudiant['id']}")).json()[0]
    assert inscription["niveau_actuel"] == 2
    assert inscription["statut"] == "completed"
    assert len((await client.get(f"{API_BASE}/certificats/etudiant/{etudiant['id']}")).json()) == 1

    # Une nouvelle saisie en chaîne ne fait pas reculer l'inscription
    await client.post(f"{API_BASE}/presences/bulk", json=payload)
    inscription = (await client.get(f"{API_BASE}/inscriptions/etudiant/{etudiant['id']}")).json()[0]
    assert inscription["statut"] == "completed"

# ──────────────────────────────────────────────────────────────
# Fiche étudiant, listes enrichies et tableau de bord
# ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_fiche_etudiant(client):
    """Test de la fiche étudiant : progression par inscription et historique"""
    etudiant, formation = await creer_parcours(client)
    niveau_1 = formation["niveaux"][0]["seances"]
    await client.post(f"{API_BASE}/presences/bulk", json=saisie(etudiant, niveau_1))

    response = await client.get(f"{API_BASE}/etudiants/{etudiant['id']}")
    assert response.status_code == 200
    fiche = response.json()

    assert fiche["prenom"] == "Amina"
    assert len(fiche["inscriptions"]) == 1
    inscription = fiche["inscriptions"][0]
    assert inscription["formation"]["nom"] == "Robotique junior"
    assert inscription["inscription"]["niveau_actuel"] == 2
    assert inscription["total_seances"] == 4
    assert inscription["seances_suivies"] == 2
    assert inscription["niveaux_valides"] == 1
    assert inscription["total_niveaux"] == 2
    assert inscription["eligible"] is False
    assert inscription["statut_formation"] == "in_progress"

    historique = fiche["historique_presences"]
    assert len(historique) == 2
    assert {h["titre_seance"] for h in historique} == {"Séance 1", "Séance 2"}
    assert all(h["nom_formation"] == "Robotique junior" and h["nom_niveau"] == "Niveau 1" for h in historique)
    assert all(h["present"] is True and h["marque_le"] for h in historique)

@pytest.mark.asyncio
async def test_liste_formations_avec_compteurs(client):
    await creer_parcours(client)
    await client.post(f"{API_BASE}/formations", json={"nom": "Arduino", "nombre_niveaux": 3})

    formations = (await client.get(f"{API_BASE}/formations")).json()
    assert [(f["nom"], f["nombre_inscrits"], f["nombre_niveaux"]) for f in formations] == [
        ("Robotique junior", 1, 2),
        ("Arduino", 0, 3),
    ]

@pytest.mark.asyncio
async def test_liste_certificats_avec_noms(client):
    etudiant, formation = await creer_parcours(client)
    await client.post(f"{API_BASE}/presences/bulk", json=saisie(etudiant, seances(formation)))

    certificats = (await client.get(f"{API_BASE}/certificats")).json()
    assert len(certificats) == 1
    assert certificats[0]["nom_etudiant"] == "Amina Ben Salah"
    assert certificats[0]["nom_formation"] == "Robotique junior"

@pytest.mark.asyncio
async def test_tableau_de_bord(client):
    """Test des statistiques du tableau de bord"""
    etudiant, formation = await creer_parcours(client)
    autre = (await client.post(f"{API_BASE}/etudiants", json=get_etudiant_data("Yassine"))).json()
    await client.post(f"{API_BASE}/inscriptions", json={"etudiant_id": autre["id"], "formation_id": formation["id"]})

    await client.post(f"{API_BASE}/presences/bulk", json=saisie(etudiant, seances(formation)))
    await client.post(f"{API_BASE}/presences/bulk", json=saisie(autre, seances(formation)[:1], present=False))

    response = await client.get(f"{API_BASE}/dashboard/stats")
    assert response.status_code == 200
    stats = response.json()

    assert stats["total_etudiants"] == 2
    assert stats["formations_actives"] == 1
    assert stats["certificats_emis"] == 1
    assert stats["presences_du_jour"] == 4, "Seules les présences marquées présentes comptent"
    assert stats["progression_formations"] == [{
        "formation_id": formation["id"],
        "nom_formation": "Robotique junior",
        "nombre_inscrits": 2,
        "nombre_termines": 1,
        "progression_moyenne": 50,
    }]
