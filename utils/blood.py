from models.user import BLOOD_GROUPS

# recipient -> donor groups it can receive from
COMPATIBLE_DONORS = {
    "O-": ("O-",),
    "O+": ("O+", "O-"),
    "A-": ("A-", "O-"),
    "A+": ("A+", "A-", "O+", "O-"),
    "B-": ("B-", "O-"),
    "B+": ("B+", "B-", "O+", "O-"),
    "AB-": ("AB-", "A-", "B-", "O-"),
    "AB+": BLOOD_GROUPS,
}


def normalize_blood_group(value) -> str:
    return (value or "").strip().upper()


def compatible_donor_groups(recipient: str) -> tuple:
    return COMPATIBLE_DONORS.get(normalize_blood_group(recipient), ())
