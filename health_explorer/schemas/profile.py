from pydantic import BaseModel, Field
from typing import List, Literal, Optional

Sex = Literal["male", "female", "other"]


class Medication(BaseModel):
    name: str
    dosage: Optional[str] = None


class PatientProfile(BaseModel):
    id: str = ""
    name: str = ""
    age: int = 0
    sex: Sex = "other"
    medications: List[Medication] = Field(default_factory=list)
    conditions: List[str] = Field(default_factory=list)
    allergies: List[str] = Field(default_factory=list)
