from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PortalSelectors:
    """
    The ameli portal markup may change over time.
    Keep all CSS selectors / id prefixes / text hooks here for easy maintenance.
    """

    # Login form
    login_field: str = "connexioncompte_2numSecuriteSociale"
    secret_field: str = "connexioncompte_2codeConfidentiel"
    action_field: str = "connexioncompte_2actionEvt"
    action_value: str = "connecter"
    submit_field: str = "submit"
    submit_value: str = "Valider"

    # Post-login page states
    login_errors: str = "#r_errors"
    meta_refresh: str = "meta[http-equiv=refresh]"
    terms_page_marker: str = "as_conditions_generales_page"
    logout_link: str = '[title="Déconnexion du compte ameli"]'

    # Reimbursement landing page
    end_date_input: str = "#paiements_1dateFin"

    # Reimbursement list
    month_block: str = ".blocParMois"
    month_block_label: str = ".rowdate .mois"
    line_id_prefix: str = "lignePaiement"
    line_day: str = ".col-date .jour"
    line_month: str = ".col-date .mois"
    line_handler_attr: str = "onclick"
    third_party_nature: str = "PAIEMENT_A_UN_TIERS"

    # Reimbursement detail
    statement_link: str = ".entete [id^=liendowndecompte]"
    detail_container: str = ".container:not(.entete)"
    beneficiary_name: str = "[id^=nomBeneficiaire]"
    care_nature_date: str = "[id^=Nature]"
    care_label: str = ".naturePrestation"
    care_amount_billed: str = "[id^=montantPaye]"
    care_reimbursement_base: str = "[id^=baseRemboursement]"
    care_rate: str = "[id^=taux]"
    amount_paid: str = "[id^=montantVerse]"
    participation_date: str = "[id^=dateActePFF]"
    participation_label: str = "[id^=naturePFF]"
