from __future__ import annotations

from datetime import date
from urllib.parse import urlencode

from dateutil.relativedelta import relativedelta


DEFAULT_BASE_URL = "https://assure.ameli.fr"

_ASSURE_PATH = "/PortailAS/appmanager/PortailAS/assure"
_PAIEMENTS_PATH = "/PortailAS/paiements.do"


class PortalUrls:
    """
    Every URL the pipeline touches. Pure functions of their inputs; no I/O.
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL) -> None:
        self.base_url = base_url.rstrip("/")

    def login_url(self) -> str:
        return f"{self.base_url}{_ASSURE_PATH}?" + urlencode({"_pageLabel": "as_login_page"})

    def submit_url(self) -> str:
        query = {
            "_nfpb": "true",
            "_windowLabel": "connexioncompte_2",
            "connexioncompte_2_actionOverride": "/portlets/connexioncompte/validationconnexioncompte",
            "_pageLabel": "as_login_page",
        }
        return f"{self.base_url}{_ASSURE_PATH}?" + urlencode(query)

    def reimbursement_landing_url(self) -> str:
        return f"{self.base_url}{_ASSURE_PATH}?" + urlencode({"_nfpb": "true", "_pageLabel": "as_paiements_page"})

    def bill_list_url(self, end_date: date, months_back: int) -> str:
        start_date = end_date - relativedelta(months=months_back)
        query = {
            "actionEvt": "afficherPaiementsComplementaires",
            "DateDebut": start_date.strftime("%d/%m/%Y"),
            "DateFin": end_date.strftime("%d/%m/%Y"),
            "Beneficiaire": "tout_selectionner",
            "afficherReleves": "false",
            "afficherIJ": "false",
            "afficherInva": "false",
            "afficherRentes": "false",
            "afficherRS": "false",
            "indexPaiement": "",
            "idNotif": "",
        }
        return f"{self.base_url}{_PAIEMENTS_PATH}?" + urlencode(query)

    def detail_url(self, payment_id: str, payment_nature: str, group_index: str, payment_index: str) -> str:
        query = {
            "actionEvt": "chargerDetailPaiements",
            "idPaiement": payment_id,
            "naturePaiement": payment_nature,
            "indexGroupe": group_index,
            "indexPaiement": payment_index,
        }
        return f"{self.base_url}{_PAIEMENTS_PATH}?" + urlencode(query)

    def document_url(self, link: str) -> str:
        # Statement links on the detail page are origin-relative ("/PortailAS/PDFServletReleveMensuel.dopdf?...").
        return self.base_url + link
