# domain/models/inference.py
from typing import Dict, Any, Optional, List
from enum import Enum
from pydantic import BaseModel, Field

class Severity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"

# Inference Service result schemas. Executors validate raw model output
# against these before touching any report.

class DiagnosisResult(BaseModel):
    crop: str = Field(..., description="Crop identified in the image")
    disease: str = Field(..., description="Disease or pest affecting the crop")
    confidence: float = Field(..., ge=0, le=100, description="Diagnosis confidence (0-100)")
    affectedParts: List[str] = Field(default_factory=list)
    severity: Severity = Field(default=Severity.MEDIUM)
    description: str = Field(default="")

class TreatmentStep(BaseModel):
    stepNumber: int
    title: str
    description: str
    materials: List[str] = Field(default_factory=list)
    cost: float = Field(default=0, description="Estimated material cost in PKR")
    timing: str = ""
    safetyNotes: str = ""

class TreatmentPlan(BaseModel):
    steps: List[TreatmentStep]
    totalCost: float = Field(..., description="Total estimated cost in PKR")
    timeline: str
    preventionTips: List[str] = Field(default_factory=list)

class WeatherAlertResult(BaseModel):
    alert: str = Field(..., description="Weather alert message for the farmer")
    advice: str = Field(..., description="Crop-specific advice")
    title: Optional[str] = None
    severity: Optional[str] = None

class MarketInsights(BaseModel):
    averagePricing: str = ""
    availability: str = ""
    trends: List[str] = Field(default_factory=list)

class MarketplaceResult(BaseModel):
    suppliers: List[Dict[str, Any]] = Field(default_factory=list)
    totalCount: int = 0
    searchRadius: float = 50
    recommendations: List[str] = Field(default_factory=list)
    marketInsights: MarketInsights = Field(default_factory=MarketInsights)

class CropDetection(BaseModel):
    cropType: str
    confidence: float
    plantParts: List[str] = Field(default_factory=list)
    growthStage: str = ""

class ImageHealthAnalysis(BaseModel):
    healthIndicators: List[str] = Field(default_factory=list)
    visibleSymptoms: List[str] = Field(default_factory=list)
    environmentalFactors: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)

class ImageAnalysisResult(BaseModel):
    processedImage: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    embeddings: List[float] = Field(default_factory=list)
    cropDetection: CropDetection
    imageAnalysis: ImageHealthAnalysis = Field(default_factory=ImageHealthAnalysis)
